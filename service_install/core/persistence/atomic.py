"""
Atomic file replacement.

Writes go to a temp file in the destination directory, which is then
renamed over the destination. Readers see the old content or the new
content, never a partial write.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, content: str, mode: int = 0o644) -> None:
    """Replace ``path`` with ``content`` in one rename.

    Args:
        path: Destination file. Its parent directory is created if missing.
        content: Full new content.
        mode: Permission bits for the new file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
        logger.debug("Wrote %s (%d bytes)", path, len(content))
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
