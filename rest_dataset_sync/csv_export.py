"""CSV export for file datasets.

Lines of every page are appended to a temporary CSV file, uploaded at the
end of the run in a single multipart request.
"""

import csv
import logging
import os
import tempfile

LOGGER = logging.getLogger(__name__)


def _cell(value):
    """Booleans are written as in JSON lines: true / false."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def display_bytes(size):
    size = abs(int(size))
    for unit in ("B", "kB", "MB", "GB", "TB"):
        if size < 1000 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1000


class CsvExport:
    """Temporary CSV file with one column per field key."""

    def __init__(self, fieldnames, directory=None):
        self.fieldnames = list(fieldnames)
        fd, self.path = tempfile.mkstemp(suffix=".csv", dir=directory)
        self._file = os.fdopen(fd, "w", encoding="utf-8", newline="")
        self._writer = csv.DictWriter(self._file, fieldnames=self.fieldnames,
                                      extrasaction="ignore")
        self._writer.writeheader()
        self.line_count = 0

    def write_lines(self, lines):
        self._writer.writerows({key: _cell(value) for key, value in line.items()}
                               for line in lines)
        self.line_count += len(lines)

    def close(self):
        if not self._file.closed:
            self._file.close()

    def size(self):
        return os.path.getsize(self.path)

    def open_for_upload(self):
        self.close()
        LOGGER.info("Uploading %d lines (%s)", self.line_count, display_bytes(self.size()))
        return open(self.path, "rb")

    def remove(self):
        self.close()
        if os.path.exists(self.path):
            os.remove(self.path)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.remove()
        return False
