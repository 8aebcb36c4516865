import re

# --- State directory layout ---

THREAD_FILE = "thread_id"
PLAN_PROMPT_FILE = "plan_prompt.md"
BUILD_PROMPT_FILE = "build_prompt.md"
PLAN_OUTPUT_FILE = "plan_out.log"
BUILD_OUTPUT_FILE = "build_out.log"
PLAN_FILE = "IMPLEMENTATION_PLAN.md"
SESSIONS_FILE = "sessions.json"


# --- Prompt templates ---

GOAL_PLACEHOLDER = "{{GOAL}}"
PLAN_PATH_PLACEHOLDER = "{{PLAN_PATH}}"
PLAN_TEMPLATE_FILE = "plan.md"
BUILD_TEMPLATE_FILE = "build.md"


# --- Engine output protocol ---

DONE_PATTERN = re.compile(r"STATUS:\s*DONE\b")
THREAD_PATTERN = re.compile(r"thread:\s*([0-9a-zA-Z-]+)")
STDERR_PREFIX = "[stderr] "
LOG_PREFIX = "[milhouse]"


# --- Agent turn policy ---

SANDBOX_MODE = "workspace-write"
# One-off `milhouse turn` runs are not confined to the workdir
TURN_SANDBOX_MODE = "danger-full-access"
APPROVAL_POLICY = "never"


# --- Server ---

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4173
BROWSE_TITLE = "Select project folder"
