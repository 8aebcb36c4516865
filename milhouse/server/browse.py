import asyncio
import json
import sys
from collections.abc import Callable

from milhouse.constants import BROWSE_TITLE
from milhouse.logging import get_logger

_logger = get_logger(__name__)

MAC_SCRIPT = f'set p to POSIX path of (choose folder with prompt "{BROWSE_TITLE}")'


class FolderPickerError(RuntimeError):
    pass


def parse_default_path(body: bytes) -> str | None:
    """`{"defaultPath": "..."}` from a request body; anything malformed means no default."""
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    value = parsed.get("defaultPath")
    return value if isinstance(value, str) and value.strip() else None


def picker_commands(default_path: str | None, platform: str = sys.platform) -> list[list[str]]:
    if platform == "darwin":
        return [["osascript", "-e", MAC_SCRIPT]]
    if platform.startswith("linux"):
        zenity = ["zenity", "--file-selection", "--directory", f"--title={BROWSE_TITLE}"]
        if default_path:
            zenity.append(f"--filename={default_path}")
        kdialog = ["kdialog", "--getexistingdirectory", default_path or ".", "--title", BROWSE_TITLE]
        return [zenity, kdialog]
    raise FolderPickerError("Folder picker not supported on this OS")


async def _run(args: list[str]) -> tuple[int, str, str]:
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    out, err = await proc.communicate()
    return (
        proc.returncode,
        out.decode("utf-8", errors="replace").strip(),
        err.decode("utf-8", errors="replace").strip(),
    )


async def pick_folder(
    default_path: str | None = None,
    on_stderr: Callable[[str], None] | None = None,
) -> str | None:
    """Open the native folder dialog. None means the user cancelled."""
    for args in picker_commands(default_path):
        try:
            code, out, err = await _run(args)
        except FileNotFoundError:
            _logger.debug("Folder picker not installed", command=args[0])
            continue

        if err and on_stderr:
            for line in err.splitlines():
                on_stderr(f"[browse stderr] {line}")

        if code == 0:
            return out or None
        if not out and (not err or "cancel" in err.lower()):
            return None
        raise FolderPickerError(err or "Folder selection cancelled or failed")

    raise FolderPickerError("Folder picker not available (install zenity or kdialog, or enter the path manually).")
