import asyncio
import os
from pathlib import Path

import click

from milhouse.config import Config
from milhouse.engine.executor import CodexExecutor
from milhouse.engine.loop import LoopEngine, LoopParams
from milhouse.engine.prompts import load_templates
from milhouse.logging import configure_logging


def _absolute(path: Path) -> Path:
    return Path(os.path.abspath(path.expanduser()))


@click.command()
@click.option("--goal", required=True, help="What the agent should build")
@click.option("--max-iterations", type=click.IntRange(min=0), default=0, help="Build turn budget, 0 for unbounded")
@click.option("--workdir", type=click.Path(file_okay=False, path_type=Path), default=Path.cwd, help="Agent working directory")
@click.option("--state-dir", required=True, type=click.Path(file_okay=False, path_type=Path), help="Prompts, outputs and thread id")
def main(goal: str, max_iterations: int, workdir: Path, state_dir: Path):
    """Run the plan/build loop for one session (spawned by the supervisor)."""
    if not goal.strip():
        raise click.UsageError("--goal is required")

    config = Config()
    configure_logging(config.log_level)

    executor = CodexExecutor(
        command=config.codex_command,
        model=config.codex_model,
        api_key=config.codex_api_key,
    )
    engine = LoopEngine(
        executor,
        LoopParams(
            goal=goal,
            max_iterations=max_iterations,
            workdir=_absolute(workdir),
            state_dir=_absolute(state_dir),
        ),
        templates=load_templates(config.prompts_dir),
    )
    asyncio.run(engine.run())


if __name__ == "__main__":
    main()
