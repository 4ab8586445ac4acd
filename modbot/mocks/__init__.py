from modbot.mocks.backend import MockBackend
from modbot.mocks.client import MockApiClient

__all__ = ["MockBackend", "MockApiClient"]
