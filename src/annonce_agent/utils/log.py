from __future__ import annotations

import logging

from scrapy.utils.log import configure_logging


LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
MAX_ARG_CHARS = 500


class CompactArgsFilter(logging.Filter):
    """Logging filter that shortens oversized string arguments.

    Keeps raw detail-page HTML from flooding the terminal when a record or
    page body ends up in a log call, while leaving normal messages intact.
    """

    def __init__(self, max_chars: int = MAX_ARG_CHARS) -> None:
        super().__init__()
        self.max_chars = max_chars

    def _shorten(self, value: object) -> object:
        if isinstance(value, str) and len(value) > self.max_chars:
            return f"{value[: self.max_chars]}... <{len(value)} chars>"
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, tuple):
            record.args = tuple(self._shorten(a) for a in record.args)
        elif isinstance(record.args, dict):
            record.args = {k: self._shorten(v) for k, v in record.args.items()}
        return True


def setup_logging(level: str = "INFO") -> None:
    """Install the root handler through Scrapy's log configuration."""
    configure_logging({"LOG_LEVEL": level, "LOG_FORMAT": LOG_FORMAT})
    for handler in logging.root.handlers:
        if not any(isinstance(f, CompactArgsFilter) for f in handler.filters):
            handler.addFilter(CompactArgsFilter())
