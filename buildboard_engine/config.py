import os
from pathlib import Path
from typing import Optional

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DATA_ROOT = Path(os.environ.get("BUILDBOARD_DATA_ROOT", PROJECT_ROOT / "data"))
PROJECTS_FILE = Path(os.environ.get("BUILDBOARD_PROJECTS_FILE", DATA_ROOT / "repos.json"))
TEMPLATES_DIR = Path(__file__).resolve().parent / "resources"

LOG_LEVEL = os.environ.get("BUILDBOARD_LOG_LEVEL", "DEBUG")

# Formatted with the job's author/repo/branch
REPO_URL_TEMPLATE = os.environ.get("BUILDBOARD_REPO_URL", "https://github.com/{author}/{repo}.git")

WEB_PORT = int(os.environ.get("BUILDBOARD_WEB_PORT", 5000))


def _optional_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    if not value:
        return None
    return float(value)


RECLAIM_TIMEOUT = _optional_float("BUILDBOARD_RECLAIM_TIMEOUT") # Seconds, None waits forever
