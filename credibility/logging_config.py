"""Logging setup for CLI entry points.

Library modules only create ``logging.getLogger(__name__)``; ``configure_logging``
is called once by the CLI. It is idempotent: a root logger that already has
handlers is left alone.
"""

from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO, log_dir: str | Path | None = "logs") -> None:
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT)

    # stderr, so JSON printed on stdout stays parseable
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    root.setLevel(level)

    if log_dir is None:
        return
    try:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(directory / "assessment.log", mode="a", encoding="utf-8")
    except OSError as exc:
        root.warning("File logging disabled: %s", exc)
        return
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
