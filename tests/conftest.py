import asyncio
import shlex
import sys
import textwrap
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import pytest_asyncio
import structlog

from milhouse.broadcast import LogBroadcaster
from milhouse.config import Config
from milhouse.sessions.store import SessionRegistry
from milhouse.supervisor import RunSupervisor

# Stand-ins for `python -m milhouse.engine`; engine flags land in sys.argv
ENGINE_SUCCEEDS = "print('thread: th-123', flush=True); print('Plan marked DONE. Exiting.', flush=True)"
ENGINE_FAILS = (
    "import sys; print('working', flush=True); "
    "print('Traceback: boom', file=sys.stderr, flush=True); sys.exit(3)"
)
ENGINE_HANGS = "import time; print('thread: live-42', flush=True); time.sleep(60)"
ENGINE_ECHOES_ARGS = "import json, sys; print(json.dumps(sys.argv[1:]), flush=True)"
ENGINE_HUGE_LINE = (
    "import sys; sys.stdout.write('x' * (2 << 20) + '\\n'); "
    "print('thread: after-big', flush=True)"
)
ENGINE_INTERLEAVES = (
    "import sys, time\n"
    "for i in range(3):\n"
    "    print(f'out {i}', flush=True); time.sleep(0.05)\n"
    "    print(f'err {i}', file=sys.stderr, flush=True); time.sleep(0.05)\n"
)
ENGINE_CRASHES_ON_STOP = (
    "import signal, sys, time; "
    "signal.signal(signal.SIGTERM, lambda *_: sys.exit(5)); "
    "print('ready', flush=True); time.sleep(60)"
)

# Minimal `codex exec --json` double: writes the plan file into the --add-dir
# directory and answers with a JSONL event stream.
FAKE_CODEX = textwrap.dedent(
    """
    import json, os, sys

    args = sys.argv[1:]
    prompt = sys.stdin.read()
    # Loop turns grant the state dir via --add-dir; one-off turns only have --cd
    state_dir = args[args.index("--add-dir") + 1] if "--add-dir" in args else args[args.index("--cd") + 1]
    resume = args[args.index("resume") + 1] if "resume" in args else None

    log = os.path.join(state_dir, "codex_calls.jsonl")
    with open(log, "a") as f:
        f.write(json.dumps({"args": args, "prompt": prompt}) + "\\n")

    if os.environ.get("FAKE_CODEX_FAIL"):
        print(json.dumps({"type": "turn.failed", "error": {"message": "rate limited"}}))
        sys.exit(1)

    plan = os.path.join(state_dir, "IMPLEMENTATION_PLAN.md")
    if "PHASE-BUILD" in prompt or "build agent" in prompt:
        status = os.environ.get("FAKE_CODEX_BUILD_STATUS", "DONE")
        with open(plan, "w") as f:
            f.write(f"STATUS: {status}\\n- [x] step\\n")
    else:
        with open(plan, "w") as f:
            f.write("STATUS: READY\\n- [ ] step\\n")

    thread = resume or "th-fake-1"
    print("codex banner, not json")
    print(json.dumps({"type": "thread.started", "thread_id": thread}))
    print(json.dumps({"type": "turn.started"}))
    print(json.dumps({"type": "item.completed", "item": {"id": "item_0", "type": "agent_message", "text": "ok"}}))
    print(json.dumps({"type": "turn.completed", "usage": {"input_tokens": 10, "output_tokens": 2}}))
    """
)


def python_command(script: str) -> list[str]:
    return [sys.executable, "-c", script]


async def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.02)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def fake_codex(tmp_path: Path) -> str:
    """Shell-quoted command string running the fake codex script."""
    script = tmp_path / "fake_codex.py"
    script.write_text(FAKE_CODEX)
    return shlex.join([sys.executable, str(script)])


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path, workdir: Path) -> Config:
    return Config(
        state_dir=tmp_path / "state",
        default_workdir=workdir,
        engine_command=python_command(ENGINE_SUCCEEDS),
    )


@pytest.fixture
def registry(config: Config) -> SessionRegistry:
    return SessionRegistry(config.sessions_path)


@pytest.fixture
def broadcaster() -> LogBroadcaster:
    return LogBroadcaster()


@pytest.fixture
def make_supervisor(config: Config, registry: SessionRegistry, broadcaster: LogBroadcaster):
    def factory(script: str = ENGINE_SUCCEEDS) -> RunSupervisor:
        return RunSupervisor(
            registry=registry,
            broadcaster=broadcaster,
            state_dir=config.state_dir,
            default_workdir=config.default_workdir,
            engine_command=python_command(script),
        )

    return factory


@pytest_asyncio.fixture
async def supervisor(make_supervisor) -> AsyncGenerator[RunSupervisor]:
    sup = make_supervisor()
    yield sup
    await sup.shutdown()


@pytest.fixture(autouse=True)
def reset_structlog():
    # Entry points call configure_logging(), which binds the current (possibly captured) stderr
    yield
    structlog.reset_defaults()
