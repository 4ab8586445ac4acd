import os
from datetime import timedelta
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from modbot.datastore.models import StateStoreConfig, StateStoreOptions
from modbot.services.circuit_breaker import CircuitBreakerConfig
from modbot.services.client import ApiClientConfig


class Settings(BaseModel):
    # Backend API Configuration
    api_base_url: str = Field(default="http://localhost:3000/api", alias="API_BASE_URL")
    api_key: str = Field(default="", alias="API_KEY")
    api_request_timeout: float = Field(default=30.0, alias="API_REQUEST_TIMEOUT")
    api_max_retries: int = Field(default=3, ge=0, alias="API_MAX_RETRIES")
    api_retry_delay: float = Field(default=1.0, ge=0, alias="API_RETRY_DELAY")
    api_retry_backoff_multiplier: float = Field(
        default=2.0, ge=1, alias="API_RETRY_BACKOFF_MULTIPLIER"
    )
    enable_audit_logging: bool = Field(default=True, alias="ENABLE_AUDIT_LOGGING")
    mock_mode: bool = Field(default=False, alias="MOCK_MODE")

    # Circuit Breaker Configuration
    enable_circuit_breaker: bool = Field(default=True, alias="ENABLE_CIRCUIT_BREAKER")
    cb_failure_threshold: int = Field(default=5, ge=1, alias="CB_FAILURE_THRESHOLD")
    cb_recovery_timeout: float = Field(default=60.0, ge=0, alias="CB_RECOVERY_TIMEOUT")
    cb_success_threshold: int = Field(default=3, ge=1, alias="CB_SUCCESS_THRESHOLD")
    cb_monitoring_window: float = Field(
        default=60.0, gt=0, alias="CB_MONITORING_WINDOW"
    )

    # State Store Configuration
    state_store_type: Literal["memory", "file", "redis", "sqlite"] = Field(
        default="file", alias="STATE_STORE_TYPE"
    )
    state_file_path: str = Field(
        default="./data/bot-state.json", alias="STATE_FILE_PATH"
    )
    state_default_ttl: float | None = Field(
        default=24 * 60 * 60, alias="STATE_DEFAULT_TTL"
    )
    state_cleanup_interval: float | None = Field(
        default=60 * 60, alias="STATE_CLEANUP_INTERVAL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")
    audit_log_file: str | None = Field(default=None, alias="AUDIT_LOG_FILE")

    def api_client_config(self) -> ApiClientConfig:
        return ApiClientConfig(
            base_url=self.api_base_url,
            api_key=self.api_key,
            timeout=self.api_request_timeout,
            max_retries=self.api_max_retries,
            retry_delay=self.api_retry_delay,
            retry_backoff_multiplier=self.api_retry_backoff_multiplier,
            enable_circuit_breaker=self.enable_circuit_breaker,
            enable_audit_logging=self.enable_audit_logging,
        )

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.cb_failure_threshold,
            recovery_timeout=timedelta(seconds=self.cb_recovery_timeout),
            success_threshold=self.cb_success_threshold,
            monitoring_window=timedelta(seconds=self.cb_monitoring_window),
        )

    def state_store_config(self) -> StateStoreConfig:
        return StateStoreConfig(
            type=self.state_store_type,
            options=StateStoreOptions(
                file_path=Path(self.state_file_path),
                default_ttl=(
                    timedelta(seconds=self.state_default_ttl)
                    if self.state_default_ttl
                    else None
                ),
                cleanup_interval=(
                    timedelta(seconds=self.state_cleanup_interval)
                    if self.state_cleanup_interval
                    else None
                ),
            ),
        )


def load_settings() -> Settings:
    """Read settings from the environment, after loading a .env file if present."""
    load_dotenv()
    return Settings.model_validate(dict(os.environ))
