"""Minimal line-protocol key-value server.

A small in-memory key-value store used as a disposable test dependency. It
speaks a UTF-8, newline-delimited protocol:

| Request       | Response                      |
|---------------|-------------------------------|
| `PING`        | `PONG`                        |
| `GET key`     | `VALUE value` or `NIL`        |
| `SET key val` | `OK`                          |
| `DEL key`     | `OK` or `NIL`                 |
| `KEYS`        | `KEYS k1 k2 ...` (sorted)     |

Keys are single tokens without whitespace. The value of `SET` is the rest of
the line after the key and its separating space, kept verbatim (leading
spaces and empty values included). Malformed requests get `ERR <message>`.

Run it as a module; host, port and seed scripts default to the variables set
by `ProcessRuntime`:

```bash
python -m fixturekit.kvstore.server --port 6380 --init-script seed.kv
```
"""

import logging
import os
import socketserver
import threading
import time
from pathlib import Path
from typing import Annotated

import typer

from fixturekit.foundation.logger import configure_logging

from .script import ScriptError, load_scripts

logger = logging.getLogger("fixturekit.kvstore.server")

READY_MESSAGE = "kvstore ready to accept connections"
SCRIPT_ERROR_EXIT_CODE = 3


class KVStore:
    """Thread-safe in-memory key space."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(data or {})
        self._lock = threading.Lock()

    def execute(self, line: str) -> str:
        """Execute one protocol request and return the response line."""
        name, _, rest = line.lstrip().partition(" ")
        if not name:
            return "ERR empty command"
        command = name.upper()

        with self._lock:
            if command == "PING":
                return "PONG"
            if command == "KEYS":
                return " ".join(["KEYS", *sorted(self._data)])
            if command in ("GET", "DEL"):
                args = rest.split()
                if len(args) == 1:
                    if command == "GET":
                        value = self._data.get(args[0])
                        return "NIL" if value is None else f"VALUE {value}"
                    return "OK" if self._data.pop(args[0], None) is not None else "NIL"
            if command == "SET":
                key, separator, value = rest.partition(" ")
                if key and separator:
                    self._data[key] = value
                    return "OK"

        if command in ("GET", "SET", "DEL"):
            return f"ERR wrong number of arguments for '{command}'"
        return f"ERR unknown command '{name}'"


class _RequestHandler(socketserver.StreamRequestHandler):
    server: "KVServer"

    def handle(self) -> None:
        for raw in self.rfile:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                continue
            response = self.server.store.execute(line)
            self.wfile.write(f"{response}\n".encode())
            self.wfile.flush()


class KVServer(socketserver.ThreadingTCPServer):
    """Threaded TCP server exposing a `KVStore`."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], store: KVStore) -> None:
        self.store = store
        super().__init__(address, _RequestHandler)


def _split_scripts(value: str | None) -> list[Path]:
    if not value:
        return []
    return [Path(p) for p in value.split(os.pathsep) if p]


app = typer.Typer(pretty_exceptions_enable=False)


@app.command()
def main(
    host: Annotated[str, typer.Option(envvar="FIXTURE_HOST", help="Interface to bind")] = "127.0.0.1",
    port: Annotated[int, typer.Option(envvar="FIXTURE_PORT", help="Port to listen on")] = 6380,
    init_scripts: Annotated[
        str | None,
        typer.Option("--init-script", envvar="FIXTURE_INIT_SCRIPTS", help="Seed scripts, os.pathsep separated"),
    ] = None,
    startup_delay: Annotated[float, typer.Option(help="Seconds to wait before listening")] = 0.0,
    log_level: Annotated[str, typer.Option(envvar="FIXTUREKIT_LOG_LEVEL")] = "INFO",
) -> None:
    """Serve an in-memory key-value store until terminated."""
    configure_logging(level=log_level)

    try:
        data = load_scripts(_split_scripts(init_scripts))
    except (ScriptError, OSError) as e:
        logger.error("Failed to apply init script", extra={"error": str(e)})  # noqa: TRY400
        raise typer.Exit(code=SCRIPT_ERROR_EXIT_CODE) from e

    if startup_delay > 0:
        logger.info("Delaying startup", extra={"startup_delay": startup_delay})
        time.sleep(startup_delay)

    with KVServer((host, port), KVStore(data)) as server:
        logger.info(f"{READY_MESSAGE} on {host}:{port}", extra={"keys": len(data)})
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("kvstore shutting down")


if __name__ == "__main__":
    app()
