from __future__ import annotations

import os
from dataclasses import dataclass


DEFAULT_INDEX_URL = os.environ.get(
    "ANNONCE_INDEX_URL", "http://www.tunisie-annonce.com/AnnoncesImmobilier.asp"
)
DEFAULT_DETAIL_BASE_URL = os.environ.get(
    "ANNONCE_DETAIL_BASE_URL", "http://www.tunisie-annonce.com/"
)


@dataclass
class ScraperConfig:
    """Run parameters for one scrape.

    Delays are in milliseconds; the index is walked page by page up to
    ``max_pages`` and every detail fetch is followed by ``inter_request_delay_ms``.
    """

    index_base_url: str = DEFAULT_INDEX_URL
    detail_base_url: str = DEFAULT_DETAIL_BASE_URL
    max_pages: int = int(os.environ.get("ANNONCE_MAX_PAGES", "5"))
    inter_request_delay_ms: int = int(os.environ.get("ANNONCE_REQUEST_DELAY_MS", "500"))
    inter_page_delay_ms: int = int(os.environ.get("ANNONCE_PAGE_DELAY_MS", "1000"))
    request_timeout_secs: float = float(os.environ.get("ANNONCE_REQUEST_TIMEOUT_SECS", "10"))
    page_param: str = "rech_page_num"
    user_agent: str = os.environ.get(
        "HTTP_USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    )

    def __post_init__(self) -> None:
        if self.max_pages < 1:
            raise ValueError(f"max_pages must be at least 1, got {self.max_pages}")
