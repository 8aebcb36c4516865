from dataclasses import dataclass
from pathlib import Path

from milhouse.constants import BUILD_TEMPLATE_FILE, PLAN_TEMPLATE_FILE

PLAN_TEMPLATE = """You are the planning agent for an autonomous build loop.

GOAL:
{{GOAL}}

Study the repository in the current working directory, then write an
implementation plan to:

    {{PLAN_PATH}}

Plan format:
- First line: `STATUS: READY`
- A short summary of the approach.
- A markdown checklist (`- [ ] ...`) of small, independently verifiable steps,
  ordered so each one builds on the previous.
- For each step, note how to verify it (test command, manual check).

Do not implement anything yet. Only write the plan file.
"""

BUILD_TEMPLATE = """You are the build agent for an autonomous build loop.

GOAL:
{{GOAL}}

The implementation plan lives at:

    {{PLAN_PATH}}

On every turn:
1. Read the plan and pick the first unchecked item (`- [ ]`).
2. Implement it in the current working directory.
3. Verify it the way the plan says (run the tests / checks).
4. Tick the item (`- [x]`) and add a one-line note of what changed.
5. If something blocks you, write the blocker under the item and move on.

When every item is checked and verified, change the status line of the plan
to `STATUS: DONE`. Never write `STATUS: DONE` while unchecked items remain.
"""


@dataclass(frozen=True)
class PromptTemplates:
    plan: str
    build: str


def load_templates(prompts_dir: Path | None = None) -> PromptTemplates:
    """Built-in templates, each optionally replaced by `<prompts_dir>/plan.md` / `build.md`."""
    plan, build = PLAN_TEMPLATE, BUILD_TEMPLATE
    if prompts_dir:
        plan_path = prompts_dir / PLAN_TEMPLATE_FILE
        build_path = prompts_dir / BUILD_TEMPLATE_FILE
        if plan_path.exists():
            plan = plan_path.read_text(encoding="utf-8")
        if build_path.exists():
            build = build_path.read_text(encoding="utf-8")
    return PromptTemplates(plan=plan, build=build)


def render(template: str, replacements: dict[str, str]) -> str:
    # Plain str.replace per placeholder, applied in dict order
    for key, value in replacements.items():
        template = template.replace(key, value)
    return template


def render_to_file(template: str, path: Path, replacements: dict[str, str]) -> str:
    rendered = render(template, replacements)
    path.write_text(rendered, encoding="utf-8")
    return rendered
