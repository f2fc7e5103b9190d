"""Write rendered artifacts to disk."""

import os
from pathlib import Path

from vmetrics_deploy.paths import OUTPUT_MODE
from vmetrics_deploy.utils.log import get_logger

logger = get_logger(__name__)


def write_file(path: Path | str, data: bytes, mode: int = OUTPUT_MODE) -> None:
    """Create or truncate ``path`` and write ``data`` to it.

    ``mode`` only applies when the file is created and is subject to the
    process umask. Existing files keep their permissions. ``OSError`` from the
    filesystem is not caught.
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    logger.debug(f"Wrote {len(data)} bytes to: {path}")
