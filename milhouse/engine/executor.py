"""
Codex CLI turn executor.

Wraps `codex exec --json` in non-interactive mode. The prompt goes in on stdin
and the JSONL event stream on stdout is folded into a single TurnResult.
Passing a thread id resumes that conversation (`codex exec ... resume <id>`).
"""

import asyncio
import json
import os
import shlex
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from milhouse.constants import APPROVAL_POLICY, SANDBOX_MODE
from milhouse.logging import get_logger
from milhouse.streams import STREAM_LIMIT, read_lines

_logger = get_logger(__name__)

STDERR_TAIL_CHARS = 4000


class TurnExecutionError(RuntimeError):
    pass


@dataclass(frozen=True)
class TurnResult:
    thread_id: str | None
    final_response: str
    items: list[dict] = field(default_factory=list)
    usage: dict | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "finalResponse": self.final_response,
            "items": self.items,
            "usage": self.usage,
        }


class TurnExecutor(Protocol):
    async def execute(
        self,
        prompt: str,
        workdir: Path,
        thread_id: str | None = None,
        *,
        sandbox_mode: str = SANDBOX_MODE,
        approval_policy: str = APPROVAL_POLICY,
        additional_directories: Sequence[Path] = (),
        skip_git_repo_check: bool = True,
    ) -> TurnResult: ...


def parse_event(line: str) -> dict | None:
    """One JSONL event, or None for blank and non-JSON lines (banners, warnings)."""
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        _logger.debug("Skipping non-JSON codex output", line=line[:200])
        return None
    return event if isinstance(event, dict) else None


def collect_turn(lines: Iterable[str], thread_id: str | None = None) -> TurnResult:
    """Fold codex JSONL events into a TurnResult.

    Raises TurnExecutionError on `turn.failed` / `error` events.
    """
    final_response = ""
    items: list[dict] = []
    usage: dict | None = None

    for raw in lines:
        event = parse_event(raw)
        if event is None:
            continue

        match event.get("type"):
            case "thread.started":
                thread_id = event.get("thread_id") or thread_id
            case "item.completed":
                item = event.get("item") or {}
                items.append(item)
                if item.get("type") == "agent_message":
                    final_response = item.get("text") or final_response
            case "turn.completed":
                usage = event.get("usage")
            case "turn.failed":
                error = event.get("error") or {}
                raise TurnExecutionError(error.get("message") or "Codex turn failed")
            case "error":
                raise TurnExecutionError(event.get("message") or "Codex reported an error")

    return TurnResult(thread_id=thread_id, final_response=final_response, items=items, usage=usage)


async def _send_prompt(proc: asyncio.subprocess.Process, prompt: str) -> None:
    try:
        proc.stdin.write(prompt.encode("utf-8"))
        await proc.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Codex exited before reading the prompt; its exit code is reported instead
        _logger.debug("Codex closed stdin early")
    finally:
        proc.stdin.close()


class CodexExecutor:
    def __init__(self, command: str = "codex", model: str | None = None, api_key: str | None = None):
        self.command = shlex.split(command)
        self.model = model
        self.api_key = api_key

    def build_args(
        self,
        workdir: Path,
        thread_id: str | None,
        *,
        sandbox_mode: str,
        approval_policy: str,
        additional_directories: Sequence[Path],
        skip_git_repo_check: bool,
    ) -> list[str]:
        args = [*self.command, "exec", "--json"]
        if self.model:
            args.extend(["--model", self.model])
        args.extend(["--sandbox", sandbox_mode, "--cd", str(workdir)])
        for directory in additional_directories:
            args.extend(["--add-dir", str(directory)])
        if skip_git_repo_check:
            args.append("--skip-git-repo-check")
        args.extend(["-c", f"approval_policy={approval_policy}"])
        if thread_id:
            args.extend(["resume", thread_id])
        return args

    async def execute(
        self,
        prompt: str,
        workdir: Path,
        thread_id: str | None = None,
        *,
        sandbox_mode: str = SANDBOX_MODE,
        approval_policy: str = APPROVAL_POLICY,
        additional_directories: Sequence[Path] = (),
        skip_git_repo_check: bool = True,
        on_event: Callable[[dict], None] | None = None,
    ) -> TurnResult:
        """Run one turn. `on_event` sees each JSONL event as it arrives."""
        args = self.build_args(
            workdir,
            thread_id,
            sandbox_mode=sandbox_mode,
            approval_policy=approval_policy,
            additional_directories=additional_directories,
            skip_git_repo_check=skip_git_repo_check,
        )
        env = dict(os.environ)
        if self.api_key:
            env["CODEX_API_KEY"] = self.api_key

        _logger.info("Running codex turn", workdir=str(workdir), resume=thread_id)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise TurnExecutionError(f"Codex CLI failed to start: {e}") from e

        feeding = asyncio.create_task(_send_prompt(proc, prompt))
        stderr_reading = asyncio.create_task(proc.stderr.read())

        lines: list[str] = []
        async for raw in read_lines(proc.stdout):
            line = raw.decode("utf-8", errors="replace")
            lines.append(line)
            if on_event:
                event = parse_event(line)
                if event is not None:
                    on_event(event)

        await feeding
        err_text = (await stderr_reading).decode("utf-8", errors="replace")
        returncode = await proc.wait()

        result = collect_turn(lines, thread_id=thread_id)
        if returncode != 0:
            raise TurnExecutionError(
                f"Codex CLI exited {returncode}.\n"
                f"Command: {shlex.join(args)}\n"
                f"Stderr:\n{err_text[-STDERR_TAIL_CHARS:]}"
            )
        return result
