"""
CSV Output Utilities

Writes extraction artifacts: a fixed header line followed by the given lines,
one per physical line, using the platform line terminator.
"""

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    """Destination for formatted extraction lines."""

    def dump(self, file_name: str, lines: Iterable[str] | None) -> None:
        ...


class CsvWriter:
    """CSV file dumper writing into a single folder."""

    def __init__(self, folder: str | Path, header: str) -> None:
        """
        Initialize writer and ensure the output folder exists.

        Args:
            folder: Folder to store csv files (created if missing)
            header: Header line written at the top of every file
        """
        self.folder = Path(folder)
        self.header = header
        self.folder.mkdir(parents=True, exist_ok=True)

    def dump(self, file_name: str, lines: Iterable[str] | None) -> None:
        """
        Write header and lines to a file, replacing any existing file.

        Args:
            file_name: File name relative to the output folder
            lines: Lines to write verbatim; None writes the header only

        Raises:
            OSError: If the file cannot be written
        """
        path = self.folder / file_name

        # Text mode translates "\n" to os.linesep
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.header + "\n")
            if lines is not None:
                for line in lines:
                    f.write(line + "\n")

        logger.debug("Csv file written: %s", str(path))
