"""Incremental transcript reading with truncation detection.

Reads only the bytes appended to a transcript since a given byte offset.
The reader does not own offsets; the monitor passes the tracked offset in
and commits the returned end offset itself.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadResult:
    """Bytes read from a transcript in one call.

    Attributes:
        content: Raw bytes from start_offset to end of file.
        start_offset: Offset the read started at.
        end_offset: Offset just past the last byte read.
        reset: True when the tracked offset was beyond the file size and
            reading restarted from the beginning.
    """

    content: bytes
    start_offset: int
    end_offset: int
    reset: bool = False


class IncrementalTranscriptReader:
    """Reads transcript files from a byte offset with bounded retries.

    Attributes:
        retry_attempts: Read attempts before the file is skipped.
        retry_delay: Seconds to sleep between attempts.
    """

    def __init__(self, retry_attempts: int = 3, retry_delay: float = 0.1):
        """Initialize the reader.

        Args:
            retry_attempts: Read attempts before giving up (at least 1).
            retry_delay: Seconds to sleep between attempts.
        """
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = max(0.0, retry_delay)

    def read_from(self, path: str | Path, offset: int = 0) -> ReadResult | None:
        """Read everything appended to a file since offset.

        Runs in a worker thread; the retry delay blocks that thread only.

        Args:
            path: Transcript file to read.
            offset: Byte offset already consumed.

        Returns:
            ReadResult, or None if the file vanished or every attempt failed.
        """
        file_path = Path(path)
        last_error: OSError | None = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                return self._read_once(file_path, offset)
            except FileNotFoundError:
                logger.debug(f"Transcript disappeared before read: {file_path}")
                return None
            except OSError as e:
                last_error = e
                logger.debug(
                    f"Read attempt {attempt}/{self.retry_attempts} failed for {file_path}: {e}"
                )
                if attempt < self.retry_attempts and self.retry_delay:
                    time.sleep(self.retry_delay)

        logger.warning(
            f"Giving up on {file_path} after {self.retry_attempts} attempts: {last_error}"
        )
        return None

    def _read_once(self, file_path: Path, offset: int) -> ReadResult:
        with file_path.open("rb") as f:
            size = f.seek(0, 2)
            reset = False

            if offset > size:
                logger.warning(
                    f"Transcript {file_path} was truncated "
                    f"(offset {offset} > size {size}), reading from start"
                )
                offset = 0
                reset = True

            f.seek(max(offset, 0))
            content = f.read()
            end_offset = f.tell()

        if content:
            logger.debug(
                f"Read {len(content)} new bytes from {file_path} "
                f"(offset {offset} -> {end_offset})"
            )
        return ReadResult(
            content=content, start_offset=offset, end_offset=end_offset, reset=reset
        )
