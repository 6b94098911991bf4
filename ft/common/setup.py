import os
from pathlib import Path
from dataclasses import dataclass

# Lil helper function to create missing directories if missing, and optionally error out when a path
# doesn't exist.
def ensure_directory(path: Path,must_exist=False):
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True,exist_ok=True)
    return path

# Picks the per-user data folder. An explicit FOCUSTIMER_HOME wins, then the Windows roaming profile, then the
# XDG-ish default everywhere else.
def _resolve_data_root() -> Path:
    explicit = os.getenv("FOCUSTIMER_HOME")
    if explicit:
        return Path(explicit)
    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / "FocusTimer"
    return Path.home() / ".local" / "share" / "focustimer"

# Dataclass for accessing paths across program.
@dataclass(frozen=False)
class ProjectPaths:

    root: Path
    data: Path
    logs: Path

    @staticmethod
    def build():
        # Source checkout root, only used for locating things relative to the package
        root = Path(__file__).resolve().parents[2]

        data = ensure_directory(_resolve_data_root())
        logs = ensure_directory(data / "logs")

        return ProjectPaths(
            root = root,
            data = data,
            logs = logs,
        )
PATHS = ProjectPaths.build()
