"""Driver for the bundled key-value store."""

from pathlib import Path
from typing import Any

from fixturekit.core.models import ProvisionedFixture
from fixturekit.kvstore.client import KVClient, KVStoreError
from fixturekit.kvstore.script import parse_script

from .interfaces.driver import DependencyDriver
from .mixins import LoggerMixin


class KVDriver(LoggerMixin, DependencyDriver):
    """Connects to a key-value store fixture with a pooled `KVClient`.

    Attributes:
        pool_size: Idle connections kept by the shared client.
        timeout: Socket timeout for requests.
    """

    name = "kv"

    def __init__(self, pool_size: int = 4, timeout: float = 2.0) -> None:
        self.pool_size = pool_size
        self.timeout = timeout

    def connection_string(self, fixture: ProvisionedFixture) -> str:
        return f"kv://{fixture.host}:{fixture.port}"

    def open(self, connection_string: str) -> KVClient:
        client = KVClient.from_url(connection_string, pool_size=self.pool_size, timeout=self.timeout)
        if not client.ping():
            client.close()
            msg = f"Key-value store at {connection_string} did not answer PING"
            raise KVStoreError(msg)
        return client

    def ping(self, client: Any) -> bool:
        try:
            return bool(client.ping())
        except KVStoreError:
            return False

    def close(self, client: Any) -> None:
        client.close()

    def check_init_script(self, path: Path) -> None:
        parse_script(path.read_text(encoding="utf-8"), path)
