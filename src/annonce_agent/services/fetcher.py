"""HTTP retrieval of index and detail pages.

One GET per call with a bounded timeout; failures surface as ``TransportError``
and are never retried here. Pacing between requests is the controller's job.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urljoin

import requests

from annonce_agent.config import ScraperConfig
from annonce_agent.errors import TransportError


logger = logging.getLogger(__name__)


class ListingFetcher:
    def __init__(
        self,
        config: ScraperConfig | None = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or ScraperConfig()
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = self.config.user_agent

    def _get(self, url: str, params: Optional[dict[str, object]] = None) -> str:
        try:
            resp = self.session.get(url, params=params, timeout=self.config.request_timeout_secs)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(url, str(exc)) from exc
        return resp.text

    def fetch_index(self, page: int) -> str:
        """Return the HTML of index page ``page`` (1-based)."""
        logger.debug("Fetching index page %d", page)
        return self._get(self.config.index_base_url, params={self.config.page_param: page})

    def detail_url(self, link: str) -> str:
        return urljoin(self.config.detail_base_url, link)

    def fetch_detail(self, link: str) -> str:
        """Return the HTML of the detail page behind a relative listing link."""
        url = self.detail_url(link)
        logger.debug("Fetching detail page %s", url)
        return self._get(url)

    def close(self) -> None:
        self.session.close()
