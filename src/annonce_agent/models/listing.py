"""Data models for scraped listings."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Set

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ListingRecord(BaseModel):
    """One listing from the index table, optionally enriched from its detail page."""

    external_id: str
    location: str = ""
    nature: str = ""
    property_type: str = ""
    title: str = ""
    detail_link: str = ""
    # Kept as scraped, e.g. "350 000"
    price: str = ""
    date_modified: str = ""
    has_photo: bool = False
    is_professional: bool = False
    raw_detail_html: Optional[str] = None
    phone_numbers: Set[str] = Field(default_factory=set)
    image_urls: List[str] = Field(default_factory=list)
    scraped_at: datetime = Field(default_factory=_utcnow)
    saved_at: Optional[datetime] = None

    @property
    def phone_count(self) -> int:
        return len(self.phone_numbers)

    @property
    def image_count(self) -> int:
        return len(self.image_urls)
