import asyncio
import os
import signal
from dataclasses import dataclass
from pathlib import Path

from milhouse.artifacts import read_artifacts
from milhouse.broadcast import LogBroadcaster
from milhouse.constants import LOG_PREFIX, STDERR_PREFIX, THREAD_PATTERN
from milhouse.logging import get_logger
from milhouse.paths import resolve_workdir, state_dir_for
from milhouse.sessions.models import SessionRecord, SessionStatus
from milhouse.sessions.store import SessionRegistry
from milhouse.streams import STREAM_LIMIT, read_lines

_logger = get_logger(__name__)

STOP_SIGNAL = signal.SIGTERM


class AlreadyRunningError(RuntimeError):
    pass


class WorkdirNotFoundError(FileNotFoundError):
    pass


class EngineLaunchError(RuntimeError):
    pass


class SessionStoreError(RuntimeError):
    pass


@dataclass(frozen=True)
class LineEvent:
    text: str
    stderr: bool


@dataclass(frozen=True)
class ExitEvent:
    returncode: int


def describe_exit(returncode: int) -> tuple[int | None, str | None]:
    """Split an asyncio returncode into (exit code, signal name)."""
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, str(-returncode)
    return returncode, None


class RunSupervisor:
    """Owns the single loop-engine child process of a server instance.

    Child stdout/stderr readers and the exit watcher push events onto one
    queue; a single drain task consumes it on the event loop, publishes lines
    and finalizes the session record.
    """

    def __init__(
        self,
        *,
        registry: SessionRegistry,
        broadcaster: LogBroadcaster,
        state_dir: Path,
        default_workdir: Path,
        engine_command: list[str],
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.state_dir = state_dir
        self.default_workdir = default_workdir
        self.engine_command = list(engine_command)

        self._child: asyncio.subprocess.Process | None = None
        self._session: SessionRecord | None = None
        self._drain_task: asyncio.Task | None = None
        self._stop_requested = False

    @property
    def running(self) -> bool:
        return self._session is not None and self._session.is_running

    @property
    def session(self) -> SessionRecord | None:
        return self._session

    def status(self) -> dict:
        session = self._session
        return {
            "running": self.running,
            "session": session.to_dict() if session else None,
            "artifacts": read_artifacts(session.state_dir).to_dict() if session else {},
        }

    def _engine_args(self, session: SessionRecord) -> list[str]:
        return [
            *self.engine_command,
            "--goal",
            session.goal,
            "--max-iterations",
            str(session.max_iterations),
            "--workdir",
            str(session.workdir),
            "--state-dir",
            str(session.state_dir),
        ]

    async def start(
        self,
        goal: str,
        max_iterations: int = 0,
        workdir_input: str | None = None,
        create_if_missing: bool = True,
    ) -> SessionRecord:
        # No await between this check and the registry append below
        if self.running:
            raise AlreadyRunningError("A run is already in progress")

        workdir = resolve_workdir(self.default_workdir, workdir_input)
        if not workdir.exists():
            if not create_if_missing:
                raise WorkdirNotFoundError(f"Workdir not found: {workdir}")
            workdir.mkdir(parents=True, exist_ok=True)

        state_dir = state_dir_for(self.state_dir, workdir)
        try:
            state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SessionStoreError(f"Could not create state dir {state_dir}: {e}") from e

        self.broadcaster.reset()
        session = SessionRecord(
            goal=goal,
            max_iterations=max_iterations,
            workdir=workdir,
            state_dir=state_dir,
        )
        try:
            self.registry.append(session)
        except OSError as e:
            raise SessionStoreError(f"Could not record session in {self.registry.path}: {e}") from e
        self._session = session
        self._stop_requested = False

        self.broadcaster.publish(f"{LOG_PREFIX} Starting run…")
        self.broadcaster.publish(f"{LOG_PREFIX} workdir: {workdir}")
        self.broadcaster.publish(f"{LOG_PREFIX} state dir: {state_dir}")
        _logger.info("Run started", session=session.id, workdir=str(workdir), max_iterations=max_iterations)

        try:
            child = await asyncio.create_subprocess_exec(
                *self._engine_args(session),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(os.environ),
                limit=STREAM_LIMIT,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            self.broadcaster.publish(f"{STDERR_PREFIX}Failed to launch loop engine: {e}")
            self._finalize(session, SessionStatus.FAILED)
            raise EngineLaunchError(f"Failed to launch loop engine: {e}") from e

        self._child = child
        self._drain_task = asyncio.create_task(self._drain(child, session))
        if self._stop_requested:
            # stop() arrived while the engine was being spawned
            self._signal(child)
        return session

    def _signal(self, child: asyncio.subprocess.Process) -> bool:
        try:
            if os.name == "posix":
                # Whole process group, so the agent CLI under the engine stops too
                os.killpg(child.pid, STOP_SIGNAL)
            else:
                child.terminate()
        except ProcessLookupError:
            # Exited between the returncode check and the signal
            return False
        return True

    def stop(self) -> bool:
        """Ask the running engine to terminate. Returns False when nothing is running."""
        if not self.running:
            return False

        child = self._child
        if child is not None and child.returncode is not None:
            return False

        self._stop_requested = True
        if child is None:
            # Still spawning; start() signals the child once it exists
            _logger.info("Stop requested during launch", session=self._session.id)
            return True

        _logger.info("Stopping run", session=self._session.id, pid=child.pid)
        return self._signal(child)

    async def wait(self) -> None:
        task = self._drain_task
        if task is not None:
            await task

    async def shutdown(self) -> None:
        self.stop()
        await self.wait()

    async def _read_lines(self, stream: asyncio.StreamReader, events: asyncio.Queue, stderr: bool) -> None:
        async for raw in read_lines(stream):
            text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if text:
                await events.put(LineEvent(text=text, stderr=stderr))

    async def _drain(self, child: asyncio.subprocess.Process, session: SessionRecord) -> None:
        events: asyncio.Queue = asyncio.Queue()

        async def watch() -> None:
            results = await asyncio.gather(
                self._read_lines(child.stdout, events, stderr=False),
                self._read_lines(child.stderr, events, stderr=True),
                return_exceptions=True,
            )
            for error in results:
                if isinstance(error, Exception):
                    _logger.warning("Engine output reader failed", session=session.id, error=repr(error))
            # Exit is reported whatever happened to the readers
            await events.put(ExitEvent(await child.wait()))

        watcher = asyncio.create_task(watch())
        try:
            while True:
                event = await events.get()
                if isinstance(event, ExitEvent):
                    self._on_exit(session, event.returncode)
                    break
                self._on_line(session, event)
        finally:
            if self._child is child:
                self._child = None
            if not watcher.done():
                watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)

    def _on_line(self, session: SessionRecord, event: LineEvent) -> None:
        if event.stderr:
            self.broadcaster.publish(f"{STDERR_PREFIX}{event.text}")
            return
        self.broadcaster.publish(event.text)
        found = THREAD_PATTERN.search(event.text)
        if found:
            session.thread_id = found.group(1)

    def _exit_status(self, returncode: int) -> SessionStatus:
        if returncode == 0:
            return SessionStatus.SUCCEEDED
        if returncode == -STOP_SIGNAL:
            return SessionStatus.STOPPED
        # terminate() on Windows reports an exit code, not a signal
        if self._stop_requested and os.name != "posix":
            return SessionStatus.STOPPED
        return SessionStatus.FAILED

    def _on_exit(self, session: SessionRecord, returncode: int) -> None:
        code, sig = describe_exit(returncode)
        self.broadcaster.publish(
            f"[exit] code={'null' if code is None else code} signal={'null' if sig is None else sig}"
        )
        self._child = None
        self._finalize(session, self._exit_status(returncode))

    def _finalize(self, session: SessionRecord, status: SessionStatus) -> None:
        session.finish(status)
        try:
            self.registry.update_by_id(session.id, session)
        except OSError:
            # In-memory record stays authoritative for /api/status
            _logger.error("Could not persist session outcome", session=session.id, exc_info=True)
        log = _logger.info if status is SessionStatus.SUCCEEDED else _logger.warning
        log("Run finished", session=session.id, status=status.value, thread_id=session.thread_id)
