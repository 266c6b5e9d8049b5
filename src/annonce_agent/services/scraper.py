"""Incremental scrape controller for the tunisie-annonce.com listing index.

The index lists newest listings first. Each run walks it page by page,
enriches every unseen listing from its detail page and stops as soon as it
meets the watermark, i.e. the newest listing of the previous run. The first
new listing of the run then becomes the next watermark.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Protocol

from annonce_agent.config import ScraperConfig
from annonce_agent.errors import PersistenceError, TransportError
from annonce_agent.models import ListingRecord
from annonce_agent.services.extractors import (
    extract_image_urls,
    extract_phone_numbers,
    parse_index_page,
)


logger = logging.getLogger(__name__)


class ScrapeState(str, Enum):
    IDLE = "idle"
    FETCHING_INDEX_PAGE = "fetching_index_page"
    PARSING_ROW = "parsing_row"
    FETCHING_DETAIL = "fetching_detail"
    PERSISTING = "persisting"
    PAGE_DONE = "page_done"
    NEXT_PAGE = "next_page"
    STOPPED_BY_WATERMARK = "stopped_by_watermark"
    STOPPED_EMPTY_PAGE = "stopped_empty_page"
    STOPPED_PAGE_LIMIT = "stopped_page_limit"
    UPDATING_WATERMARK = "updating_watermark"


STOP_STATES = frozenset(
    {
        ScrapeState.STOPPED_BY_WATERMARK,
        ScrapeState.STOPPED_EMPTY_PAGE,
        ScrapeState.STOPPED_PAGE_LIMIT,
    }
)


class PageSource(Protocol):
    def fetch_index(self, page: int) -> str: ...

    def fetch_detail(self, link: str) -> str: ...


class RecordStore(Protocol):
    def upsert(self, record: ListingRecord) -> ListingRecord: ...

    def load_watermark(self) -> Optional[str]: ...

    def save_watermark(self, external_id: str) -> None: ...


@dataclass
class ScrapeRun:
    """Everything one run knows; discarded when the run ends."""

    watermark: Optional[str] = None
    first_external_id: Optional[str] = None
    page: int = 0
    pages_walked: int = 0
    new_records: int = 0
    persisted: int = 0
    detail_failures: int = 0
    persist_failures: int = 0
    watermark_reached: bool = False
    watermark_updated: bool = False
    state: ScrapeState = ScrapeState.IDLE
    stop_reason: Optional[ScrapeState] = None
    records: List[ListingRecord] = field(default_factory=list)
    history: List[ScrapeState] = field(default_factory=list)


class ScrapeController:
    """Sequential page walker with watermark-based stopping.

    ``fetcher`` and ``store`` only need the methods used here, so tests can
    pass simple fakes. ``sleep`` takes seconds, like ``time.sleep``.
    """

    def __init__(
        self,
        fetcher: PageSource,
        store: RecordStore,
        config: ScraperConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.config = config or ScraperConfig()
        self._sleep = sleep

    def _transition(self, run: ScrapeRun, state: ScrapeState) -> None:
        run.state = state
        run.history.append(state)
        if state in STOP_STATES:
            run.stop_reason = state

    def _pause(self, delay_ms: int) -> None:
        if delay_ms > 0:
            self._sleep(delay_ms / 1000.0)

    def _load_watermark(self) -> Optional[str]:
        try:
            watermark = self.store.load_watermark()
        except PersistenceError as exc:
            logger.warning("Could not read watermark, scraping without one: %s", exc)
            return None
        if watermark:
            logger.info("Loaded watermark: %s", watermark)
        else:
            logger.info("No watermark found (first run)")
        return watermark or None

    def run(self) -> ScrapeRun:
        """Scrape newest listings until the watermark, an empty page or the page limit.

        Raises ``TransportError`` when an index page cannot be fetched; the
        watermark is left as it was in that case.
        """
        run = ScrapeRun(watermark=self._load_watermark())
        self._transition(run, ScrapeState.IDLE)
        page = 1
        while run.stop_reason is None:
            run.page = page
            self._transition(run, ScrapeState.FETCHING_INDEX_PAGE)
            try:
                html = self.fetcher.fetch_index(page)
            except TransportError as exc:
                logger.error("Aborting run, index page %d failed: %s", page, exc)
                raise
            run.pages_walked += 1

            candidates = parse_index_page(html)
            before = run.new_records
            self._scrape_candidates(run, candidates)
            self._transition(run, ScrapeState.PAGE_DONE)
            logger.info(
                "Page %d: %d rows, %d new listings", page, len(candidates), run.new_records - before
            )

            if not candidates:
                logger.info("No more listings found on page %d", page)
                self._transition(run, ScrapeState.STOPPED_EMPTY_PAGE)
            elif run.watermark_reached:
                logger.info("Reached watermark %s on page %d", run.watermark, page)
                self._transition(run, ScrapeState.STOPPED_BY_WATERMARK)
            elif page >= self.config.max_pages:
                logger.info("Page limit %d reached", self.config.max_pages)
                self._transition(run, ScrapeState.STOPPED_PAGE_LIMIT)
            else:
                self._transition(run, ScrapeState.NEXT_PAGE)
                self._pause(self.config.inter_page_delay_ms)
                page += 1

        self._update_watermark(run)
        self._transition(run, ScrapeState.IDLE)
        logger.info(
            "Run finished (%s): %d new listings, %d persisted over %d pages",
            run.stop_reason.value if run.stop_reason else "unknown",
            run.new_records,
            run.persisted,
            run.pages_walked,
        )
        return run

    def _scrape_candidates(self, run: ScrapeRun, candidates: List[ListingRecord]) -> None:
        for candidate in candidates:
            self._transition(run, ScrapeState.PARSING_ROW)
            if run.watermark and candidate.external_id == run.watermark:
                run.watermark_reached = True
                return
            if run.first_external_id is None:
                run.first_external_id = candidate.external_id
            run.new_records += 1
            run.records.append(candidate)
            self._scrape_detail(run, candidate)

    def _scrape_detail(self, run: ScrapeRun, candidate: ListingRecord) -> None:
        self._transition(run, ScrapeState.FETCHING_DETAIL)
        try:
            html = self.fetcher.fetch_detail(candidate.detail_link)
        except TransportError as exc:
            run.detail_failures += 1
            logger.warning("Skipping listing %s, detail fetch failed: %s", candidate.external_id, exc)
            return
        finally:
            self._pause(self.config.inter_request_delay_ms)

        enriched = candidate.model_copy(
            update={
                "raw_detail_html": html,
                "phone_numbers": extract_phone_numbers(html),
                "image_urls": extract_image_urls(html, self.config.detail_base_url),
            }
        )
        self._transition(run, ScrapeState.PERSISTING)
        try:
            self.store.upsert(enriched)
        except PersistenceError as exc:
            run.persist_failures += 1
            logger.warning("Listing %s not saved: %s", candidate.external_id, exc)
            return
        run.persisted += 1
        logger.info(
            "Saved %s (%d phones, %d images)",
            enriched.external_id,
            enriched.phone_count,
            enriched.image_count,
        )

    def _update_watermark(self, run: ScrapeRun) -> None:
        if run.new_records == 0 or run.first_external_id is None:
            return
        self._transition(run, ScrapeState.UPDATING_WATERMARK)
        try:
            self.store.save_watermark(run.first_external_id)
        except PersistenceError as exc:
            logger.error(
                "Watermark %s NOT saved, next run will re-scrape from the top: %s",
                run.first_external_id,
                exc,
            )
            return
        run.watermark_updated = True
        logger.info("Watermark updated to %s", run.first_external_id)
