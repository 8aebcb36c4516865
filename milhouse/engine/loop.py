import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import click

from milhouse.artifacts import StateLayout, read_text_if_exists
from milhouse.constants import (
    APPROVAL_POLICY,
    DONE_PATTERN,
    GOAL_PLACEHOLDER,
    PLAN_PATH_PLACEHOLDER,
    SANDBOX_MODE,
)
from milhouse.engine.executor import TurnExecutor, TurnResult
from milhouse.engine.prompts import PromptTemplates, render_to_file
from milhouse.logging import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class LoopParams:
    goal: str
    max_iterations: int
    workdir: Path
    state_dir: Path


@dataclass(frozen=True)
class LoopResult:
    builds: int
    done: bool


def plan_is_done(text: str) -> bool:
    return DONE_PATTERN.search(text) is not None


class LoopEngine:
    """Plan once, then run build turns until the plan says DONE.

    Every turn resumes the conversation stored in the state directory's
    thread file, so the build prompt is rendered once and reused verbatim.
    The plan file is the only progress signal read back between turns.
    """

    def __init__(
        self,
        executor: TurnExecutor,
        params: LoopParams,
        templates: PromptTemplates,
        emit: Callable[[str], None] = click.echo,
    ):
        self.executor = executor
        self.params = params
        self.templates = templates
        self.emit = emit
        self.layout = StateLayout(params.state_dir)

    @property
    def replacements(self) -> dict[str, str]:
        return {
            GOAL_PLACEHOLDER: self.params.goal,
            PLAN_PATH_PLACEHOLDER: str(self.layout.plan_file),
        }

    async def _turn(self, prompt: str, thread_id: str | None, output: Path) -> TurnResult:
        result = await self.executor.execute(
            prompt,
            self.params.workdir,
            thread_id,
            sandbox_mode=SANDBOX_MODE,
            approval_policy=APPROVAL_POLICY,
            additional_directories=[self.params.state_dir],
            skip_git_repo_check=True,
        )
        output.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        if result.thread_id:
            self.layout.write_thread_id(result.thread_id)
            self.emit(f"thread: {result.thread_id}")
        return result

    async def run(self) -> LoopResult:
        params = self.params
        params.state_dir.mkdir(parents=True, exist_ok=True)

        plan_prompt = render_to_file(self.templates.plan, self.layout.plan_prompt, self.replacements)
        _logger.info("Planning", goal=params.goal, workdir=str(params.workdir))
        await self._turn(plan_prompt, None, self.layout.plan_output)

        build_prompt = render_to_file(self.templates.build, self.layout.build_prompt, self.replacements)

        iteration = 0
        builds = 0
        while True:
            if params.max_iterations > 0 and iteration >= params.max_iterations:
                self.emit(f"Reached max iterations: {params.max_iterations}")
                return LoopResult(builds=builds, done=False)

            await self._turn(build_prompt, self.layout.read_thread_id(), self.layout.build_output)
            builds += 1

            plan_text = read_text_if_exists(self.layout.plan_file) or ""
            if plan_is_done(plan_text):
                self.emit("Plan marked DONE. Exiting.")
                return LoopResult(builds=builds, done=True)

            iteration += 1
            self.emit(f"================ LOOP {iteration} ================")
