from __future__ import annotations

import argparse
import json
from typing import List

from annonce_agent.models import ListingRecord
from annonce_agent.repositories.postgres import open_store
from annonce_agent.utils.documents import to_document


SHOWN_FIELDS = ("external_id", "title", "saved_at", "phone_count", "image_count")


def _print_listings(heading: str, listings: List[ListingRecord]) -> None:
    print(heading)
    for i, listing in enumerate(listings, 1):
        doc = to_document(listing, include_html=False)
        print(f"  {i}. " + json.dumps({k: doc[k] for k in SHOWN_FIELDS}, ensure_ascii=False))


def main() -> None:
    parser = argparse.ArgumentParser(description="Show the stored scrape watermark and recent listings")
    parser.add_argument("--limit", type=int, default=5)
    args = parser.parse_args()

    with open_store() as store:
        watermark = store.load_watermark()
        newest = store.recent(args.limit)
        oldest = store.recent(args.limit, oldest_first=True)

    print(f"Watermark: {watermark or 'none (first run)'}")
    _print_listings(f"Most recent {args.limit} listings:", newest)
    _print_listings(f"Oldest {args.limit} listings:", oldest)


if __name__ == "__main__":
    main()
