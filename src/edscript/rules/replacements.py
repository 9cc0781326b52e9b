"""Local replacements for remote javascript and css files."""

from pathlib import Path
from typing import Optional, Union

import structlog


logger = structlog.get_logger()


class ReplacementTable:
    """
    Map of remote url to local file, read from a jslocal file.

    Each line is local_file:url. The url may not carry a query string;
    the query string of a requested url is ignored when looking it up.
    Later lines win over earlier ones.
    """

    def __init__(self):
        self._entries: list[tuple[str, str]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def load(self, path: Union[str, Path]) -> int:
        """Read replacements from a file; a missing file is not an error."""
        path = Path(path)
        if not path.is_file():
            return 0

        count = 0
        text = path.read_text(encoding="utf-8", errors="replace")
        for lineno, line in enumerate(text.splitlines(), 1):
            line = line.rstrip("\r")
            if not line or line.startswith("#"):
                continue
            local, colon, url = line.partition(":")
            if not colon:
                logger.warning("replacement_no_colon", file=str(path), line=lineno)
                continue
            if "?" in url:
                logger.warning("replacement_has_query", file=str(path), line=lineno)
                continue
            self._entries.insert(0, (url, local))
            count += 1

        logger.debug("replacements_loaded", file=str(path), count=count)
        return count

    def fetch_replace(self, url: str) -> Optional[str]:
        """Local file to use in place of url, if any."""
        if not self._entries:
            return None
        base = url.split("?", 1)[0]
        for remote, local in self._entries:
            if remote == base:
                return local
        return None
