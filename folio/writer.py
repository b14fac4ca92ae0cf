"""Output writing for Folio.

Files are written to a temporary sibling first and moved into place with
``os.replace``, so a reader never sees a half-written page.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class OutputWriter:
    """Writes rendered files below the output directory.

    Attributes:
        output_dir: Root of the generated site.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir

    def write(self, relative_path: str, data: bytes | str) -> Path:
        """Atomically write ``data`` to ``relative_path`` below the output root.

        Args:
            relative_path: POSIX path relative to the output directory.
            data: Text (written as UTF-8) or bytes.

        Returns:
            The absolute path written.

        Raises:
            ValueError: If the path escapes the output directory.
        """
        target = (self.output_dir / relative_path).resolve()
        root = self.output_dir.resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"Refusing to write outside {root}: {relative_path}")

        payload = data.encode("utf-8") if isinstance(data, str) else data
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %s (%d bytes)", relative_path, len(payload))
        return target

    def exists(self, relative_path: str) -> bool:
        return (self.output_dir / relative_path).is_file()
