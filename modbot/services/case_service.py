"""
CaseService - Cached case lookups on top of the API client.

Small TTL caches keep repeated lookups (the same case opened by several
moderators, stats panels refreshing) from hitting the backend. Any write
clears all of them so readers never see a case older than its last update.
"""

from datetime import timedelta
from typing import Any

from loguru import logger

from modbot.services.cache import InMemoryCache, build_cache_key
from modbot.services.client import BaseApiClient, RequestOptions
from modbot.services.errors import ValidationError
from modbot.services.metrics import MetricsRegistry


def _flag(value: bool) -> str:
    return "1" if value else "0"


class CaseService:
    """
    Usage:
        cases = CaseService(api_client, metrics)
        details = await cases.get_case("CASE-1000")
    """

    def __init__(
        self,
        client: BaseApiClient,
        metrics: MetricsRegistry | None = None,
        debug: bool = False,
    ):
        self._client = client
        self.case_cache: InMemoryCache[str, Any] = InMemoryCache(
            ttl=timedelta(minutes=1), max_size=1000, name="case_by_id", debug=debug
        )
        self.player_cases_cache: InMemoryCache[str, Any] = InMemoryCache(
            ttl=timedelta(seconds=30),
            max_size=2000,
            name="cases_by_player",
            debug=debug,
        )
        self.stats_cache: InMemoryCache[str, Any] = InMemoryCache(
            ttl=timedelta(minutes=2), max_size=50, name="case_stats", debug=debug
        )

        if metrics is not None:
            for cache in self._caches:
                metrics.register_cache_provider(cache.name, cache.get_stats)

    @property
    def _caches(self) -> list[InMemoryCache[str, Any]]:
        return [self.case_cache, self.player_cases_cache, self.stats_cache]

    async def invalidate_all(self) -> None:
        for cache in self._caches:
            await cache.clear()

    async def get_case(
        self,
        case_id: str,
        include_event: bool = True,
        include_history: bool = True,
    ) -> Any:
        """Fetch one case, served from cache when possible."""
        if not case_id or not case_id.strip():
            raise ValidationError("case_id", case_id, "Case ID is required")

        key = build_cache_key(
            ["case", case_id, _flag(include_event), _flag(include_history)]
        )
        cached = await self.case_cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for case {case_id}")
            return cached

        response = await self._client.post(
            f"/moderation/cases/{case_id}",
            {
                "caseId": case_id,
                "includeEvent": include_event,
                "includeHistory": include_history,
            },
        )
        await self.case_cache.set(key, response.data)
        return response.data

    async def get_player_cases(
        self, player_id: str, limit: int = 10, offset: int = 0
    ) -> Any:
        if not player_id:
            raise ValidationError("player_id", player_id, "Player ID is required")
        if limit < 1 or limit > 100:
            raise ValidationError("limit", limit, "Limit must be between 1 and 100")
        if offset < 0:
            raise ValidationError("offset", offset, "Offset must be >= 0")

        key = build_cache_key(["player", player_id, limit, offset])
        cached = await self.player_cases_cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for player cases {player_id}")
            return cached

        response = await self._client.get(
            f"/moderation/cases/player/{player_id}",
            RequestOptions(params={"limit": limit, "offset": offset}),
        )
        await self.player_cases_cache.set(key, response.data)
        return response.data

    async def get_case_stats(self) -> Any:
        key = build_cache_key(["stats"])
        cached = await self.stats_cache.get(key)
        if cached is not None:
            return cached

        response = await self._client.get("/moderation/cases/stats")
        await self.stats_cache.set(key, response.data)
        return response.data

    async def create_case(self, payload: dict[str, Any]) -> Any:
        if not payload.get("playerId"):
            raise ValidationError(
                "playerId", payload.get("playerId"), "Player ID is required"
            )
        response = await self._client.post("/moderation/cases", payload)
        await self.invalidate_all()
        return response.data

    async def update_case(self, case_id: str, changes: dict[str, Any]) -> Any:
        if not case_id:
            raise ValidationError("case_id", case_id, "Case ID is required")
        response = await self._client.patch(f"/moderation/cases/{case_id}", changes)
        await self.invalidate_all()
        return response.data

    async def take_action(
        self,
        case_id: str,
        action: str,
        moderator_id: str,
        reason: str | None = None,
    ) -> Any:
        if not case_id:
            raise ValidationError("case_id", case_id, "Case ID is required")
        if not action:
            raise ValidationError("action", action, "Action is required")

        response = await self._client.post(
            f"/moderation/action/{case_id}",
            {"action": action, "moderatorId": moderator_id, "reason": reason},
        )
        await self.invalidate_all()
        return response.data
