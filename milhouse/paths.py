import base64
import os
from pathlib import Path


def resolve_workdir(default_workdir: Path, value: str | None) -> Path:
    """Resolve a user supplied workdir; relative paths are taken against ``default_workdir``."""
    if not value or not value.strip():
        return default_workdir
    path = Path(value.strip()).expanduser()
    if not path.is_absolute():
        path = default_workdir / path
    return Path(os.path.abspath(path))


def state_dir_for(base_dir: Path, workdir: Path) -> Path:
    """Per-workdir state directory.

    The name is the url-safe base64 of the absolute workdir path, so the same
    workdir always lands in the same directory (and the same ``thread_id``
    file) across restarts.
    """
    encoded = base64.urlsafe_b64encode(str(workdir).encode("utf-8")).decode("ascii")
    return base_dir / encoded.rstrip("=")


def workdir_for_state_dir(state_dir: Path) -> Path:
    name = state_dir.name
    padded = name + "=" * (-len(name) % 4)
    return Path(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
