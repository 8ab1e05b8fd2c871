from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

"""Environment helper utilities.

Loads a `.env` file so that ``PRICING_*`` overrides defined there become
visible to ``PricingCoreConfig.from_env``. The file defaults to the project
root (the directory holding `pyproject.toml`); ``PRICING_ENV_FILE`` points
elsewhere.
"""

__all__ = ["find_project_root", "load_project_dotenv"]


def find_project_root(start: Path | None = None) -> Path:
    """Traverse upwards until we find a directory that contains `pyproject.toml`."""
    current = start or Path(__file__).resolve().parent
    for _ in range(10):
        if (current / "pyproject.toml").exists():
            return current
        if current.parent == current:
            break
        current = current.parent
    return Path(__file__).resolve().parent


def load_project_dotenv() -> bool:
    """Load environment variables from the configured `.env` if present.

    Variables already set in the process environment win.
    """
    override_path = os.getenv("PRICING_ENV_FILE")
    dotenv_path = Path(override_path) if override_path else find_project_root() / ".env"
    if not dotenv_path.exists():
        return False
    return load_dotenv(dotenv_path=dotenv_path, override=False)
