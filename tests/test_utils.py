from __future__ import annotations

import logging

from annonce_agent.models import ListingRecord
from annonce_agent.utils.documents import to_document
from annonce_agent.utils.log import CompactArgsFilter


def test_to_document_is_json_ready() -> None:
    record = ListingRecord(
        external_id="42",
        phone_numbers={"98765432", "22111333"},
        image_urls=["http://www.tunisie-annonce.com/upload2/a/photos/1.jpg"],
        raw_detail_html="<html></html>",
    )

    doc = to_document(record)
    assert doc["phone_numbers"] == ["22111333", "98765432"]
    assert doc["phone_count"] == 2
    assert doc["image_count"] == 1
    assert isinstance(doc["scraped_at"], str)
    assert doc["raw_detail_html"] == "<html></html>"
    assert "raw_detail_html" not in to_document(record, include_html=False)


def test_compact_args_filter_shortens_large_arguments() -> None:
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "page %s id %s", ("<html>" + "a" * 2000, "42"), None)

    assert CompactArgsFilter(max_chars=10).filter(record)
    message = record.getMessage()
    assert "<2006 chars>" in message
    assert message.endswith("id 42")
