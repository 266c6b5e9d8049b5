"""Service layer for the listing scraper."""

from .fetcher import ListingFetcher
from .scraper import ScrapeController, ScrapeRun, ScrapeState

__all__ = ["ListingFetcher", "ScrapeController", "ScrapeRun", "ScrapeState"]
