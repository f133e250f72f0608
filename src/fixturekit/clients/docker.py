"""Docker sandbox runtime built on testcontainers.

This module provides `DockerRuntime`, which starts each fixture in its own
container via `testcontainers.core.container.DockerContainer`. Containers
publish every internal port on a random ephemeral host port, so concurrent
runs on one machine never collide.

## Usage

```python
from fixturekit.clients.docker import DockerRuntime
from fixturekit.config import ProvisionConfig

runtime = DockerRuntime(ProvisionConfig())
instance = runtime.start(spec)
print(instance.host, instance.ports[5432])
runtime.stop(instance.instance_id)
```

## Error Classification

Start failures are mapped to `ProvisionError` kinds:

- `docker.errors.ImageNotFound`, or an `APIError` raised while pulling:
  `IMAGE_PULL_FAILED`
- any other `DockerException` (daemon unreachable, socket permissions):
  `SANDBOX_UNAVAILABLE`

Stopping retries transient Docker Engine API errors (5xx) with exponential
backoff; a container that is already gone counts as stopped.

## Init Scripts

Each init script is bind-mounted read-only into `spec.init_script_target`
(for example `/docker-entrypoint-initdb.d` for Postgres), where the image's
entrypoint applies it on first boot.
"""

import threading
from typing import Any

import docker
import docker.errors
from testcontainers.core.container import DockerContainer

from fixturekit.config import ProvisionConfig
from fixturekit.core.exceptions import ProvisionError, ProvisionErrorKind
from fixturekit.core.models import FixtureSpec, SandboxInstance
from fixturekit.foundation.retry import HTTPErrorClassifier, RetryWithBackoff

from .interfaces.sandbox import SandboxRuntime
from .mixins import LoggerMixin


class DockerErrorClassifier(HTTPErrorClassifier):
    """Classify Docker Engine API errors as retriable or not."""

    def is_retriable(self, exc: BaseException) -> bool:
        if isinstance(exc, docker.errors.NotFound):
            return False
        if isinstance(exc, docker.errors.APIError):
            return self.is_retriable_http_status(exc.status_code)
        return isinstance(exc, (ConnectionError, TimeoutError))

    def get_error_details(self, exc: BaseException) -> dict[str, Any]:
        return {"http_status": getattr(exc, "status_code", None)}


def _is_pull_failure(exc: BaseException) -> bool:
    if isinstance(exc, docker.errors.ImageNotFound):
        return True
    if isinstance(exc, docker.errors.APIError):
        text = str(exc).lower()
        return any(marker in text for marker in ("pull access denied", "manifest unknown", "not found: manifest"))
    return False


class DockerRuntime(LoggerMixin, SandboxRuntime):
    """Sandbox runtime that runs each fixture in a Docker container.

    Attributes:
        config: Provisioning configuration (stop timeout and attempts).
    """

    name = "docker"

    def __init__(self, config: ProvisionConfig | None = None) -> None:
        self.config = config or ProvisionConfig()
        self._containers: dict[str, DockerContainer] = {}
        self._lock = threading.Lock()
        self._client: docker.DockerClient | None = None
        self._classifier = DockerErrorClassifier()
        self._retry = RetryWithBackoff(
            max_attempts=self.config.stop_max_attempts,
            wait_min=0.5,
            wait_max=5.0,
            logger=self._logger,
        )

    def _build_container(self, spec: FixtureSpec) -> DockerContainer:
        container = DockerContainer(spec.image)
        container.with_exposed_ports(*spec.ports)
        for key, value in spec.env.items():
            container.with_env(key, value)
        if spec.command:
            container.with_command(list(spec.command))
        if spec.init_scripts:
            target = (spec.init_script_target or "/docker-entrypoint-initdb.d").rstrip("/")
            for script in spec.init_scripts:
                container.with_volume_mapping(str(script.resolve()), f"{target}/{script.name}", "ro")
        return container

    def start(self, spec: FixtureSpec) -> SandboxInstance:
        """Start a container for the spec and map its ports.

        Raises:
            ProvisionError: IMAGE_PULL_FAILED or SANDBOX_UNAVAILABLE.
        """
        self._logger.info(
            "Starting container",
            extra={"fixture": spec.name, "image": spec.image, "ports": list(spec.ports)},
        )
        try:
            container = self._build_container(spec)
            container.start()
        except docker.errors.DockerException as e:
            kind = ProvisionErrorKind.IMAGE_PULL_FAILED if _is_pull_failure(e) else ProvisionErrorKind.SANDBOX_UNAVAILABLE
            raise ProvisionError(kind, f"{spec.image}: {e}", fixture_name=spec.name) from e

        try:
            wrapped = container.get_wrapped_container()
            host = container.get_container_host_ip()
            ports = {port: int(container.get_exposed_port(port)) for port in spec.ports}
        except docker.errors.DockerException as e:
            container.stop()
            raise ProvisionError(ProvisionErrorKind.SANDBOX_UNAVAILABLE, str(e), fixture_name=spec.name) from e

        with self._lock:
            self._containers[wrapped.id] = container

        self._logger.info(
            "Container started",
            extra={"fixture": spec.name, "container_id": wrapped.short_id, "host": host, "ports": ports},
        )
        return SandboxInstance(
            instance_id=wrapped.id,
            host=host,
            ports=ports,
            details={"short_id": wrapped.short_id, "image": spec.image},
        )

    def logs(self, instance_id: str) -> str:
        container = self._containers.get(instance_id)
        if container is None:
            return ""
        stdout, stderr = container.get_logs()
        return stdout.decode("utf-8", errors="replace") + stderr.decode("utf-8", errors="replace")

    def stop(self, instance_id: str) -> None:
        """Stop and remove a container, retrying transient API errors."""
        with self._lock:
            container = self._containers.pop(instance_id, None)
        if container is None:
            return
        try:
            self._retry.call(container.stop, classifier=self._classifier)
        except docker.errors.NotFound:
            self._logger.debug("Container already removed", extra={"container_id": instance_id[:12]})
        else:
            self._logger.info("Container stopped", extra={"container_id": instance_id[:12]})

    def is_running(self, instance_id: str) -> bool:
        container = self._containers.get(instance_id)
        if container is None:
            return False
        try:
            wrapped = container.get_wrapped_container()
            wrapped.reload()
        except docker.errors.NotFound:
            return False
        return wrapped.status == "running"

    def exists(self, instance_id: str) -> bool:
        if instance_id in self._containers:
            return True
        try:
            self._docker_client().containers.get(instance_id)
        except docker.errors.NotFound:
            return False
        return True

    def _docker_client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
