"""Client for the line-protocol key-value store.

`KVClient` keeps a small pool of TCP connections so one client can be shared
by concurrently running test cases. Each request checks a connection out of
the pool, sends one line and reads one line back.

## Usage

```python
from fixturekit.kvstore.client import KVClient

client = KVClient(host="127.0.0.1", port=6380)
client.set("greeting", "hello")
assert client.get("greeting") == "hello"
client.close()
```
"""

import logging
import queue
import socket
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

import attrs

from fixturekit.foundation.exceptions import UpstreamError
from fixturekit.foundation.retry import RetryWithBackoff

logger = logging.getLogger(__name__)


class KVStoreError(UpstreamError):
    """Raised when the key-value store is unreachable or answers `ERR`."""


@attrs.define(slots=True)
class _Connection:
    sock: socket.socket
    reader: IO[bytes]

    def close(self) -> None:
        self.reader.close()
        self.sock.close()


@attrs.define(frozen=False, slots=True)
class KVClient:
    """Pooled client for the key-value store.

    Attributes:
        host: Server host.
        port: Server port.
        pool_size: Maximum number of idle connections kept open.
        timeout: Socket timeout in seconds for connects and reads.
        connect_attempts: Connect attempts before giving up.
    """

    host: str
    port: int
    pool_size: int = attrs.field(default=4)
    timeout: float = attrs.field(default=2.0)
    connect_attempts: int = attrs.field(default=3)
    _pool: "queue.LifoQueue[_Connection]" = attrs.field(init=False, factory=queue.LifoQueue)
    _closed: bool = attrs.field(init=False, default=False)
    _lock: threading.Lock = attrs.field(init=False, factory=threading.Lock)
    _retry: RetryWithBackoff = attrs.field(init=False)

    def __attrs_post_init__(self) -> None:
        self._retry = RetryWithBackoff(
            max_attempts=self.connect_attempts,
            wait_min=0.05,
            wait_max=0.5,
            retry_exceptions=(ConnectionRefusedError, TimeoutError),
            logger=logger,
        )

    @classmethod
    def from_url(cls, url: str, **kwargs: object) -> "KVClient":
        """Create a client from a `kv://host:port` URL."""
        if not url.startswith("kv://"):
            msg = f"Not a key-value store URL: {url}"
            raise ValueError(msg)
        host, _, port = url.removeprefix("kv://").rstrip("/").rpartition(":")
        return cls(host=host, port=int(port), **kwargs)  # type: ignore[arg-type]

    def _connect(self) -> _Connection:
        sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        return _Connection(sock=sock, reader=sock.makefile("rb"))

    @contextmanager
    def _connection(self) -> Iterator[_Connection]:
        if self._closed:
            msg = "KVClient is closed"
            raise KVStoreError(msg)
        try:
            conn = self._pool.get_nowait()
        except queue.Empty:
            try:
                conn = self._retry.call(self._connect)
            except OSError as e:
                msg = f"Cannot connect to key-value store at {self.host}:{self.port}: {e}"
                raise KVStoreError(msg) from e

        try:
            yield conn
        except BaseException:
            conn.close()
            raise

        with self._lock:
            if self._closed or self._pool.qsize() >= self.pool_size:
                conn.close()
            else:
                self._pool.put(conn)

    def execute(self, *parts: str) -> str:
        """Send one request and return the raw response line.

        Raises:
            ValueError: If a part contains a line break.
            KVStoreError: On transport failure or an `ERR` response.
        """
        if any("\r" in part or "\n" in part for part in parts):
            msg = "Key-value store requests cannot contain line breaks"
            raise ValueError(msg)
        request = " ".join(parts)
        with self._connection() as conn:
            try:
                conn.sock.sendall(f"{request}\n".encode())
                line = conn.reader.readline()
            except OSError as e:
                msg = f"Key-value store request failed: {e}"
                raise KVStoreError(msg) from e
            if not line:
                msg = "Key-value store closed the connection"
                raise KVStoreError(msg)
        response = line.decode("utf-8").rstrip("\r\n")
        if response.startswith("ERR"):
            raise KVStoreError(response[4:] or response)
        return response

    def ping(self) -> bool:
        return self.execute("PING") == "PONG"

    def get(self, key: str) -> str | None:
        response = self.execute("GET", _checked_key(key))
        if response == "NIL":
            return None
        return response.removeprefix("VALUE ")

    def set(self, key: str, value: str) -> None:
        """Store `value` under `key`. The value is kept verbatim, spaces included.

        Raises:
            ValueError: If the key is empty or contains whitespace, or the
                value contains a line break.
        """
        self.execute("SET", _checked_key(key), value)

    def delete(self, key: str) -> bool:
        """Delete a key; returns False if it did not exist."""
        return self.execute("DEL", _checked_key(key)) == "OK"

    def keys(self) -> list[str]:
        return self.execute("KEYS").split()[1:]

    def close(self) -> None:
        """Close all pooled connections. Idempotent."""
        with self._lock:
            self._closed = True
            while True:
                try:
                    self._pool.get_nowait().close()
                except queue.Empty:
                    break


def _checked_key(key: str) -> str:
    if not key or any(c.isspace() for c in key):
        msg = f"Invalid key {key!r}: keys must be non-empty and contain no whitespace"
        raise ValueError(msg)
    return key
