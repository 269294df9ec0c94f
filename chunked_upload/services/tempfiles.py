import os
import logging
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from chunked_upload.core.config import settings

logger = logging.getLogger(__name__)


class TempFileFactory:
    """Hands out 0-byte scratch files that are removed when their scope ends."""

    def __init__(self, base_dir: Optional[str] = None, prefix: str = "chunkedupload_"):
        self.base_dir = base_dir or settings.TEMP_DIR
        self.prefix = prefix

    @contextmanager
    def new_temp_file(self, suffix: str = "") -> Iterator[Path]:
        os.makedirs(self.base_dir, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=self.prefix, suffix=suffix, dir=self.base_dir)
        os.close(fd)
        path = Path(name)
        try:
            yield path
        finally:
            # promotion may already have moved the file away
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            else:
                logger.debug(f"Released temp file {path}")
