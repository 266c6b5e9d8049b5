from __future__ import annotations

from typing import Any, Dict

from annonce_agent.models import ListingRecord


def to_document(record: ListingRecord, include_html: bool = True) -> Dict[str, Any]:
    """Convert a listing to a JSON-serializable dict for storage or display.

    - Calls ``model_dump(mode="json")`` so timestamps serialize cleanly.
    - Phone numbers become a sorted list; counts are added alongside.
    - ``include_html=False`` drops the raw detail page, which is large.
    """
    exclude = None if include_html else {"raw_detail_html"}
    data = record.model_dump(mode="json", exclude=exclude)
    data["phone_numbers"] = sorted(record.phone_numbers)
    data["phone_count"] = record.phone_count
    data["image_count"] = record.image_count
    return data
