from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from milhouse.constants import (
    BUILD_OUTPUT_FILE,
    BUILD_PROMPT_FILE,
    PLAN_FILE,
    PLAN_OUTPUT_FILE,
    PLAN_PROMPT_FILE,
    THREAD_FILE,
)


@dataclass(frozen=True)
class StateLayout:
    root: Path

    @property
    def thread_file(self) -> Path:
        return self.root / THREAD_FILE

    @property
    def plan_prompt(self) -> Path:
        return self.root / PLAN_PROMPT_FILE

    @property
    def build_prompt(self) -> Path:
        return self.root / BUILD_PROMPT_FILE

    @property
    def plan_output(self) -> Path:
        return self.root / PLAN_OUTPUT_FILE

    @property
    def build_output(self) -> Path:
        return self.root / BUILD_OUTPUT_FILE

    @property
    def plan_file(self) -> Path:
        return self.root / PLAN_FILE

    def read_thread_id(self) -> str | None:
        text = read_text_if_exists(self.thread_file)
        if text is None:
            return None
        return text.strip() or None

    def write_thread_id(self, thread_id: str) -> None:
        self.thread_file.write_text(thread_id, encoding="utf-8")


class ArtifactSnapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    plan_log: str | None = None
    build_log: str | None = None
    plan_file: str | None = None
    thread_id: str | None = None

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def read_text_if_exists(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def read_artifacts(state_dir: Path) -> ArtifactSnapshot:
    layout = StateLayout(state_dir)
    return ArtifactSnapshot(
        plan_log=read_text_if_exists(layout.plan_output),
        build_log=read_text_if_exists(layout.build_output),
        plan_file=read_text_if_exists(layout.plan_file),
        thread_id=layout.read_thread_id(),
    )
