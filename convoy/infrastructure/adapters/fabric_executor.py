"""
Fabric Executor

Architectural Intent:
- Infrastructure adapter implementing HostExecutorPort via Fabric/SSH
- One connection per action; blocking Fabric calls run in a worker thread
  so many hosts can be driven from one event loop
- Classifies every failure as transient (retry) or permanent (fail fast)

Security:
- SSH connections use connect_timeout, allow_agent, look_for_keys
- Every interpolated value is quoted via shlex.quote()

Host Layout:
- Container services run under their service name, labelled with
  convoy.version=<version>
- System units are stored per release under <state_dir>/releases/<unit>/
  and symlinked into /etc/systemd/system; <state_dir>/<unit>.version
  records the active release so rollback is a relink + restart
"""

import asyncio
import io
import logging
import shlex
import socket
import uuid
from typing import Callable

from fabric import Connection
from invoke.exceptions import CommandTimedOut
from paramiko.ssh_exception import (
    AuthenticationException,
    NoValidConnectionsError,
    SSHException,
)

from convoy.domain.entities.service_descriptor import HealthCheckKind, ServiceKind
from convoy.domain.errors import PermanentExecutionError, TransientExecutionError
from convoy.domain.ports.host_executor_port import HostExecutorPort
from convoy.domain.value_objects.host_action import (
    ActionResult,
    CopyFile,
    HostAction,
    InstallUnit,
    PullImage,
    QueryHealth,
    QueryStatus,
    RunCommand,
    StartContainer,
    StartUnit,
    StopContainer,
    StopUnit,
)
from convoy.domain.value_objects.host_id import HostId

logger = logging.getLogger(__name__)

TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "connection refused",
    "connection reset",
    "temporary failure",
    "tls handshake",
    "service unavailable",
    "too many requests",
    "no route to host",
)

# ssh(1) exits 255 when the connection itself failed
SSH_FAILURE_EXIT = 255

q = shlex.quote


class FabricHostExecutor(HostExecutorPort):
    """Adapter implementing HostExecutorPort via Fabric/SSH."""

    def __init__(
        self,
        connect_timeout: int = 30,
        command_timeout: float = 600,
        use_sudo: bool = True,
        state_dir: str = "/var/lib/convoy",
    ) -> None:
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.use_sudo = use_sudo
        self.state_dir = state_dir.rstrip("/")

    def _get_connection(self, host_id: HostId) -> Connection:
        connect_kwargs = {
            "allow_agent": True,
            "look_for_keys": True,
        }
        if host_id.credentials_ref:
            connect_kwargs["key_filename"] = host_id.credentials_ref
        return Connection(
            host=host_id.host,
            user=host_id.user,
            port=host_id.port,
            connect_timeout=self.connect_timeout,
            connect_kwargs=connect_kwargs,
        )

    async def execute(self, host_id: HostId, action: HostAction) -> ActionResult:
        return await asyncio.to_thread(self._execute_sync, host_id, action)

    def _execute_sync(self, host_id: HostId, action: HostAction) -> ActionResult:
        handler = self._handlers().get(type(action))
        if handler is None:
            raise PermanentExecutionError(f"Unsupported action {action.name}")

        logger.debug("%s: %s", host_id, action.describe())
        conn = self._get_connection(host_id)
        try:
            return handler(conn, action)
        except (TransientExecutionError, PermanentExecutionError):
            raise
        except AuthenticationException as e:
            raise PermanentExecutionError(f"Authentication failed for {host_id}: {e}")
        except CommandTimedOut as e:
            raise TransientExecutionError(f"{action.describe()} timed out on {host_id}: {e}")
        except (NoValidConnectionsError, SSHException, socket.timeout, EOFError, OSError) as e:
            raise TransientExecutionError(f"Connection to {host_id} failed: {e}")
        finally:
            conn.close()

    def _handlers(self) -> dict[type, Callable[[Connection, HostAction], ActionResult]]:
        return {
            RunCommand: self._run_command,
            CopyFile: self._copy_file,
            QueryStatus: self._query_status,
            QueryHealth: self._query_health,
            PullImage: self._pull_image,
            StartContainer: self._start_container,
            StopContainer: self._stop_container,
            InstallUnit: self._install_unit,
            StartUnit: self._start_unit,
            StopUnit: self._stop_unit,
        }

    # -- command plumbing ----------------------------------------------------

    def _shell(self, conn: Connection, command: str, privileged: bool = True):
        if privileged and self.use_sudo:
            # Wrap so redirects and && chains run under sudo as a whole
            return conn.sudo(
                f"sh -c {q(command)}", hide=True, warn=True, timeout=self.command_timeout
            )
        return conn.run(command, hide=True, warn=True, timeout=self.command_timeout)

    def _checked(self, conn: Connection, command: str, privileged: bool = True):
        result = self._shell(conn, command, privileged)
        if result.failed:
            raise self._classify(conn, command, result)
        return result

    @staticmethod
    def _classify(conn: Connection, command: str, result) -> Exception:
        stderr = (result.stderr or "").strip()
        message = f"`{command}` exited {result.exited} on {conn.host}: {stderr or 'no output'}"
        lowered = stderr.lower()
        if result.exited == SSH_FAILURE_EXIT or any(m in lowered for m in TRANSIENT_MARKERS):
            return TransientExecutionError(message)
        return PermanentExecutionError(message)

    def _upload(self, conn: Connection, content: str, remote_path: str, mode: str) -> None:
        staging = f"/tmp/convoy-{uuid.uuid4().hex}"
        conn.put(io.StringIO(content), remote=staging)
        self._checked(
            conn,
            f"install -D -m {q(mode)} {q(staging)} {q(remote_path)} && rm -f {q(staging)}",
        )

    def _result(self, result, **extra) -> ActionResult:
        return ActionResult(
            ok=result.ok,
            stdout=(result.stdout or "").strip(),
            stderr=(result.stderr or "").strip(),
            **extra,
        )

    # -- generic actions -----------------------------------------------------

    def _run_command(self, conn: Connection, action: RunCommand) -> ActionResult:
        return self._result(self._checked(conn, action.command))

    def _copy_file(self, conn: Connection, action: CopyFile) -> ActionResult:
        self._upload(conn, action.content, action.remote_path, action.mode)
        return ActionResult(ok=True)

    # -- status and health ---------------------------------------------------

    def _query_status(self, conn: Connection, action: QueryStatus) -> ActionResult:
        if action.service_kind is ServiceKind.CONTAINER:
            fmt = '{{.State.Running}} {{index .Config.Labels "convoy.version"}}'
            result = self._shell(
                conn, f"docker inspect --format {q(fmt)} {q(action.service_name)}"
            )
            if result.failed:
                if "no such" in (result.stderr or "").lower():
                    return ActionResult(ok=True, healthy=False)
                raise self._classify(conn, "docker inspect", result)
            running, _, version = (result.stdout or "").strip().partition(" ")
            return ActionResult(
                ok=True,
                stdout=result.stdout.strip(),
                version=version.strip() or None,
                healthy=running == "true",
            )

        unit = action.unit_name or self._unit_for(action.service_name)
        recorded = self._shell(conn, f"cat {q(self._version_file(unit))}")
        active = self._shell(conn, f"systemctl is-active {q(unit)}")
        version = (recorded.stdout or "").strip() if recorded.ok else ""
        return ActionResult(
            ok=True,
            stdout=(active.stdout or "").strip(),
            version=version or None,
            healthy=active.ok,
        )

    def _query_health(self, conn: Connection, action: QueryHealth) -> ActionResult:
        check = action.health_check
        if check.kind is HealthCheckKind.HTTP:
            result = self._shell(
                conn,
                f"curl -sS -o /dev/null -w '%{{http_code}}' --max-time 10 {q(check.target)}",
                privileged=False,
            )
            code = (result.stdout or "").strip()
            return self._result(result, healthy=code == str(check.expected_status))
        if check.kind is HealthCheckKind.COMMAND:
            result = self._shell(conn, check.target)
            return self._result(result, healthy=result.ok)

        if action.service_kind is ServiceKind.CONTAINER:
            result = self._shell(
                conn,
                f"docker inspect --format '{{{{.State.Running}}}}' {q(action.service_name)}",
            )
            return self._result(result, healthy=(result.stdout or "").strip() == "true")
        unit = action.unit_name or self._unit_for(action.service_name)
        result = self._shell(conn, f"systemctl is-active --quiet {q(unit)}")
        return self._result(result, healthy=result.ok)

    # -- containers ------------------------------------------------------------

    def _pull_image(self, conn: Connection, action: PullImage) -> ActionResult:
        return self._result(self._checked(conn, f"docker pull {q(action.image)}"))

    def _start_container(self, conn: Connection, action: StartContainer) -> ActionResult:
        parts = [
            "docker run -d",
            f"--name {q(action.container)}",
            "--restart unless-stopped",
            f"--label convoy.version={q(action.version)}",
        ]
        parts += [f"-e {q(f'{k}={v}')}" for k, v in action.env]
        parts += [f"-p {q(p)}" for p in action.ports]
        parts.append(q(action.image))
        self._shell(conn, f"docker rm -f {q(action.container)}")
        return self._result(
            self._checked(conn, " ".join(parts)), version=action.version
        )

    def _stop_container(self, conn: Connection, action: StopContainer) -> ActionResult:
        result = self._shell(conn, f"docker stop {q(action.container)}")
        if result.failed and "no such container" not in (result.stderr or "").lower():
            raise self._classify(conn, "docker stop", result)
        return self._result(result)

    # -- systemd units ---------------------------------------------------------

    def _install_unit(self, conn: Connection, action: InstallUnit) -> ActionResult:
        release = self._release_path(action.unit_name, action.version)
        self._upload(conn, action.content, release, "0644")
        if action.env:
            env_body = "".join(f"{k}={v}\n" for k, v in action.env)
            self._upload(conn, env_body, f"{self.state_dir}/{action.unit_name}.env", "0640")
        self._activate_release(conn, action.unit_name, action.version)
        return ActionResult(ok=True, version=action.version)

    def _start_unit(self, conn: Connection, action: StartUnit) -> ActionResult:
        if action.version:
            release = self._release_path(action.unit_name, action.version)
            exists = self._shell(conn, f"test -f {q(release)}")
            if exists.failed:
                raise PermanentExecutionError(
                    f"Release {action.version} of {action.unit_name} is not on {conn.host}"
                )
            self._activate_release(conn, action.unit_name, action.version)
        self._checked(conn, f"systemctl enable {q(action.unit_name)}")
        result = self._checked(conn, f"systemctl restart {q(action.unit_name)}")
        return self._result(result, version=action.version)

    def _stop_unit(self, conn: Connection, action: StopUnit) -> ActionResult:
        result = self._shell(conn, f"systemctl stop {q(action.unit_name)}")
        if result.failed and "not loaded" not in (result.stderr or "").lower():
            raise self._classify(conn, "systemctl stop", result)
        return self._result(result)

    def _activate_release(self, conn: Connection, unit: str, version: str) -> None:
        release = self._release_path(unit, version)
        self._checked(
            conn,
            f"ln -sfn {q(release)} {q('/etc/systemd/system/' + unit)} && "
            f"echo {q(version)} > {q(self._version_file(unit))} && "
            "systemctl daemon-reload",
        )

    def _release_path(self, unit: str, version: str) -> str:
        return f"{self.state_dir}/releases/{unit}/{version}.service"

    def _version_file(self, unit: str) -> str:
        return f"{self.state_dir}/{unit}.version"

    @staticmethod
    def _unit_for(service_name: str) -> str:
        return service_name if service_name.endswith(".service") else f"{service_name}.service"
