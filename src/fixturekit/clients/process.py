"""Local child-process sandbox runtime.

`ProcessRuntime` runs a dependency as a child process of the test run. It is
the runtime of choice for lightweight dependencies that ship as Python
modules (like the bundled key-value store) and for environments without a
Docker daemon.

## Ports

Free ephemeral ports are allocated per internal port before the child starts
and passed to it two ways:

- argv placeholders: `{host}`, `{port}` (the primary port) and
  `{port_<internal>}`
- environment variables: `FIXTURE_HOST`, `FIXTURE_PORT` and
  `FIXTURE_PORT_<internal>`

Init scripts are passed as `FIXTURE_INIT_SCRIPTS`, joined with `os.pathsep`.
`{python}` in the image or command expands to the running interpreter.

## Logs

stdout and stderr are redirected to a temporary file so `logs()` can be read
at any time without the pipe filling up.
"""

import os
import signal
import socket
import subprocess
import sys
import tempfile
import threading
import uuid
from pathlib import Path

import attrs

from fixturekit.config import ProvisionConfig
from fixturekit.core.exceptions import ProvisionError, ProvisionErrorKind
from fixturekit.core.models import FixtureSpec, SandboxInstance

from .interfaces.sandbox import SandboxRuntime
from .mixins import LoggerMixin

LOCALHOST = "127.0.0.1"


def allocate_port(host: str = LOCALHOST) -> int:
    """Return a free ephemeral TCP port on `host`."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])


def _expand(template: str, values: dict[str, str]) -> str:
    """Substitute `{name}` placeholders, leaving any other braces untouched."""
    for key, value in values.items():
        template = template.replace(f"{{{key}}}", value)
    return template


@attrs.define(slots=True)
class _Child:
    process: subprocess.Popen[bytes]
    log_path: Path
    log_file: object = attrs.field(repr=False)


class ProcessRuntime(LoggerMixin, SandboxRuntime):
    """Sandbox runtime that runs each fixture as a local child process.

    Attributes:
        config: Provisioning configuration (stop timeout).
    """

    name = "process"

    def __init__(self, config: ProvisionConfig | None = None) -> None:
        self.config = config or ProvisionConfig()
        self._children: dict[str, _Child] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _placeholders(ports: dict[int, int], primary: int) -> dict[str, str]:
        values = {"python": sys.executable, "host": LOCALHOST, "port": str(ports[primary])}
        values.update({f"port_{internal}": str(external) for internal, external in ports.items()})
        return values

    def _environment(self, spec: FixtureSpec, ports: dict[int, int]) -> dict[str, str]:
        env = dict(os.environ)
        env.update(spec.env)
        env["FIXTURE_HOST"] = LOCALHOST
        env["FIXTURE_PORT"] = str(ports[spec.primary_port])
        for internal, external in ports.items():
            env[f"FIXTURE_PORT_{internal}"] = str(external)
        if spec.init_scripts:
            env["FIXTURE_INIT_SCRIPTS"] = os.pathsep.join(str(p.resolve()) for p in spec.init_scripts)
        env.setdefault("PYTHONUNBUFFERED", "1")
        return env

    def start(self, spec: FixtureSpec) -> SandboxInstance:
        """Spawn the child process with freshly allocated ports.

        Raises:
            ProvisionError: IMAGE_PULL_FAILED if the executable does not exist
                or cannot be run.
        """
        ports = {internal: allocate_port() for internal in spec.ports}
        values = self._placeholders(ports, spec.primary_port)
        argv = [_expand(spec.image, values), *(_expand(arg, values) for arg in spec.command)]

        fd, log_name = tempfile.mkstemp(prefix=f"fixturekit-{spec.name}-", suffix=".log")
        log_file = os.fdopen(fd, "wb")
        process: subprocess.Popen[bytes] | None = None
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                env=self._environment(spec, ports),
                start_new_session=True,
            )
        except OSError as e:
            raise ProvisionError(
                ProvisionErrorKind.IMAGE_PULL_FAILED,
                f"Cannot execute '{argv[0]}': {e}",
                fixture_name=spec.name,
            ) from e
        finally:
            if process is None:
                log_file.close()
                Path(log_name).unlink(missing_ok=True)

        instance_id = f"proc-{process.pid}-{uuid.uuid4().hex[:8]}"
        with self._lock:
            self._children[instance_id] = _Child(process=process, log_path=Path(log_name), log_file=log_file)

        self._logger.info(
            "Process started",
            extra={"fixture": spec.name, "pid": process.pid, "ports": ports},
        )
        return SandboxInstance(
            instance_id=instance_id,
            host=LOCALHOST,
            ports=ports,
            details={"pid": process.pid, "argv": argv},
        )

    def logs(self, instance_id: str) -> str:
        child = self._children.get(instance_id)
        if child is None:
            return ""
        try:
            return child.log_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""

    def _signal_group(self, process: subprocess.Popen[bytes], sig: int) -> None:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            pass

    def stop(self, instance_id: str) -> None:
        """Terminate the child's process group, escalating to kill after the stop timeout.

        The child runs in its own session, so signalling the group also
        reaches anything it forked.
        """
        with self._lock:
            child = self._children.pop(instance_id, None)
        if child is None:
            return

        process = child.process
        self._signal_group(process, signal.SIGTERM)
        try:
            process.wait(timeout=self.config.stop_timeout)
        except subprocess.TimeoutExpired:
            self._logger.warning(
                "Process did not exit after SIGTERM, killing",
                extra={"pid": process.pid, "stop_timeout": self.config.stop_timeout},
            )
        # Descendants may outlive the leader; kill whatever is left of the group.
        self._signal_group(process, signal.SIGKILL)
        process.wait()

        child.log_file.close()  # type: ignore[attr-defined]
        child.log_path.unlink(missing_ok=True)
        self._logger.info("Process stopped", extra={"pid": process.pid, "returncode": process.returncode})

    def is_running(self, instance_id: str) -> bool:
        child = self._children.get(instance_id)
        return child is not None and child.process.poll() is None

    def exists(self, instance_id: str) -> bool:
        return instance_id in self._children

    def close(self) -> None:
        for instance_id in list(self._children):
            self.stop(instance_id)
