from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_ENV = "REACTION_AGE_LOG_LEVEL"


def _ensure_repo_root_on_path() -> None:
    """Ensure the repository root (parent of this package) is on ``sys.path``.

    Needed when this module is executed as a script
    (``python reaction_age/__main__.py``) rather than with ``-m``.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


try:
    # Works when executed as a module: python -m reaction_age
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    # Works when executed as a script (IDE "Run Python File", absolute path, etc.)
    _ensure_repo_root_on_path()
    from reaction_age.app import run  # type: ignore[attr-defined]


def configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(name)s: %(message)s")


def main() -> int:
    """Entry point for running the reaction test from the command line."""
    configure_logging()
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
