"""Ready-made fixture plans for common dependencies.

Each function returns a `FixturePlan`: the spec to provision and the probe
that decides when the dependency is usable.

- `postgres_plan`: PostgreSQL in Docker, ready after the second "ready to
  accept connections" log line (the first belongs to the temporary server
  that applies init scripts).
- `localstack_plan`: LocalStack in Docker, ready when its health endpoint
  answers.
- `kvstore_plan`: the bundled key-value store as a local child process, ready
  when its port accepts connections.
"""

import os
from pathlib import Path

import fixturekit
from fixturekit.core.models import Credentials, FixturePlan, FixtureSpec
from fixturekit.core.readiness import HttpHealthProbe, LogPatternProbe, TcpPortProbe

POSTGRES_IMAGE = "postgres:16-alpine"
POSTGRES_READY_PATTERN = "database system is ready to accept connections"
LOCALSTACK_IMAGE = "localstack/localstack:3.8"
KVSTORE_PORT = 6380


def postgres_plan(
    name: str = "postgres",
    *,
    image: str = POSTGRES_IMAGE,
    credentials: Credentials | None = None,
    init_scripts: list[Path] | None = None,
    timeout: float | None = 60.0,
) -> FixturePlan:
    """Plan for a disposable PostgreSQL database.

    Args:
        name: Fixture name.
        image: Postgres image.
        credentials: User, password and database created at boot. Defaults
            to `test`/`test`/`test`.
        init_scripts: `.sql` or `.sh` files run on first boot.
        timeout: Readiness timeout in seconds.
    """
    credentials = credentials or Credentials(username="test", password="test", database="test")  # noqa: S106
    spec = FixtureSpec(
        name=name,
        image=image,
        runtime="docker",
        driver="postgres",
        ports=(5432,),
        env={
            "POSTGRES_USER": credentials.username,
            "POSTGRES_PASSWORD": credentials.password,
            "POSTGRES_DB": credentials.database,
        },
        credentials=credentials,
        init_scripts=init_scripts or (),
        init_script_target="/docker-entrypoint-initdb.d",
    )
    probe = LogPatternProbe(pattern=POSTGRES_READY_PATTERN, occurrences=2, name="postgres-log", timeout=timeout)
    return FixturePlan(spec=spec, probe=probe)


def localstack_plan(
    name: str = "localstack",
    *,
    image: str = LOCALSTACK_IMAGE,
    services: list[str] | None = None,
    init_scripts: list[Path] | None = None,
    timeout: float | None = 90.0,
) -> FixturePlan:
    """Plan for a disposable LocalStack (AWS emulator) instance.

    Args:
        name: Fixture name.
        image: LocalStack image.
        services: AWS services to enable (e.g. `["s3", "dynamodb"]`). None
            enables the image defaults.
        init_scripts: Shell scripts run once LocalStack is ready.
        timeout: Readiness timeout in seconds.
    """
    env = {"AWS_DEFAULT_REGION": "us-east-1"}
    if services:
        env["SERVICES"] = ",".join(services)
    spec = FixtureSpec(
        name=name,
        image=image,
        runtime="docker",
        driver="http",
        ports=(4566,),
        env=env,
        init_scripts=init_scripts or (),
        init_script_target="/etc/localstack/init/ready.d",
    )
    probe = HttpHealthProbe(path="/_localstack/health", name="localstack-health", timeout=timeout)
    return FixturePlan(spec=spec, probe=probe)


def kvstore_plan(
    name: str = "kvstore",
    *,
    init_scripts: list[Path] | None = None,
    startup_delay: float = 0.0,
    timeout: float | None = 15.0,
) -> FixturePlan:
    """Plan for the bundled key-value store running as a child process.

    Args:
        name: Fixture name.
        init_scripts: Seed scripts (`SET key value` per line).
        startup_delay: Seconds the server waits before listening; lets tests
            exercise a dependency that is started but not yet ready.
        timeout: Readiness timeout in seconds.
    """
    package_root = Path(fixturekit.__file__).resolve().parent.parent
    pythonpath = os.pathsep.join(p for p in (str(package_root), os.environ.get("PYTHONPATH", "")) if p)
    spec = FixtureSpec(
        name=name,
        image="{python}",
        runtime="process",
        driver="kv",
        ports=(KVSTORE_PORT,),
        env={"PYTHONPATH": pythonpath},
        command=("-m", "fixturekit.kvstore.server", "--startup-delay", str(startup_delay)),
        init_scripts=init_scripts or (),
    )
    probe = TcpPortProbe(name="kvstore-tcp", timeout=timeout)
    return FixturePlan(spec=spec, probe=probe)
