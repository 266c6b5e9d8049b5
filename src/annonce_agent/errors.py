from __future__ import annotations


class AnnonceAgentError(Exception):
    """Base class for errors raised by the scraper."""


class TransportError(AnnonceAgentError):
    """An index or detail page could not be retrieved."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class PersistenceError(AnnonceAgentError):
    """A read or write against the listing store failed."""
