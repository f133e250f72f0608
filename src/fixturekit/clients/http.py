"""Driver for HTTP dependencies (LocalStack, mock APIs) using httpx."""

from typing import Any

import httpx

from fixturekit.core.models import ProvisionedFixture

from .interfaces.driver import DependencyDriver
from .mixins import LoggerMixin


class HttpDriver(LoggerMixin, DependencyDriver):
    """Connects to an HTTP dependency with a shared `httpx.Client`.

    Attributes:
        health_path: Path requested by `ping`.
        timeout: Request timeout in seconds.
    """

    name = "http"

    def __init__(self, health_path: str = "/", timeout: float = 5.0) -> None:
        self.health_path = health_path
        self.timeout = timeout

    def connection_string(self, fixture: ProvisionedFixture) -> str:
        return f"http://{fixture.host}:{fixture.port}"

    def open(self, connection_string: str) -> httpx.Client:
        return httpx.Client(base_url=connection_string, timeout=self.timeout)

    def ping(self, client: Any) -> bool:
        try:
            response = client.get(self.health_path)
        except httpx.HTTPError as e:
            self._logger.debug("HTTP ping failed", extra={"error": str(e)})
            return False
        return response.is_success

    def close(self, client: Any) -> None:
        client.close()
