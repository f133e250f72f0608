"""Driver for PostgreSQL fixtures using SQLAlchemy and psycopg.

The shared client is a SQLAlchemy `Engine`, whose connection pool makes it
safe to use from concurrently running test cases.

## Usage

```python
driver = PostgresDriver(pool_size=5)
engine = driver.open(driver.connection_string(fixture))
with engine.connect() as conn:
    conn.execute(text("SELECT 1"))
```
"""

from pathlib import Path
from typing import Any

from sqlalchemy import URL, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from fixturekit.core.models import ProvisionedFixture

from .interfaces.driver import DependencyDriver
from .mixins import LoggerMixin

INIT_SCRIPT_SUFFIXES = (".sql", ".sh", ".sql.gz")


class PostgresDriver(LoggerMixin, DependencyDriver):
    """Connects to a PostgreSQL fixture through a pooled SQLAlchemy engine.

    Attributes:
        pool_size: Connections kept in the engine pool.
        connect_timeout: psycopg connect timeout in seconds.
    """

    name = "postgres"

    def __init__(self, pool_size: int = 5, connect_timeout: int = 5) -> None:
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout

    def connection_string(self, fixture: ProvisionedFixture) -> str:
        credentials = fixture.spec.credentials
        url = URL.create(
            "postgresql+psycopg",
            username=credentials.username if credentials else "postgres",
            password=credentials.password if credentials else None,
            host=fixture.host,
            port=fixture.port,
            database=credentials.database if credentials else "postgres",
        )
        return url.render_as_string(hide_password=False)

    def open(self, connection_string: str) -> Engine:
        engine = create_engine(
            connection_string,
            pool_size=self.pool_size,
            pool_pre_ping=True,
            connect_args={"connect_timeout": self.connect_timeout},
        )
        # Fail fast on bad credentials instead of on first test query
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return engine

    def ping(self, client: Any) -> bool:
        try:
            with client.connect() as conn:
                return conn.execute(text("SELECT 1")).scalar() == 1
        except SQLAlchemyError as e:
            self._logger.debug("Postgres ping failed", extra={"error": str(e)})
            return False

    def close(self, client: Any) -> None:
        client.dispose()

    def check_init_script(self, path: Path) -> None:
        """Accept non-empty `.sql`, `.sql.gz` or `.sh` files.

        These are the formats the postgres image entrypoint runs from
        `/docker-entrypoint-initdb.d`.
        """
        if not path.name.endswith(INIT_SCRIPT_SUFFIXES):
            msg = f"{path.name}: postgres init scripts must end with one of {INIT_SCRIPT_SUFFIXES}"
            raise ValueError(msg)
        if not path.read_bytes().strip():
            msg = f"{path.name}: init script is empty"
            raise ValueError(msg)
