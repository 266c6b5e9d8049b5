from __future__ import annotations

import argparse
import logging
import sys
from collections import Counter
from dataclasses import replace

from annonce_agent.config import ScraperConfig
from annonce_agent.errors import AnnonceAgentError
from annonce_agent.repositories.postgres import open_store
from annonce_agent.services import ListingFetcher, ScrapeController, ScrapeRun
from annonce_agent.utils.log import setup_logging


logger = logging.getLogger(__name__)


def print_summary(run: ScrapeRun, totals: dict[str, int]) -> None:
    by_nature = Counter(r.nature or "Unknown" for r in run.records)
    by_location = Counter(r.location or "Unknown" for r in run.records)
    print("=== Summary ===")
    print(f"New listings scraped: {run.new_records}")
    print(f"Saved: {run.persisted}")
    print(f"Detail fetch failures: {run.detail_failures}")
    print(f"Save failures: {run.persist_failures}")
    print(f"Professional listings: {sum(1 for r in run.records if r.is_professional)}")
    print(f"Listings with photos: {sum(1 for r in run.records if r.has_photo)}")
    print(f"Stopped: {run.stop_reason.value if run.stop_reason else 'unknown'} after {run.pages_walked} page(s)")
    print(f"Previous watermark: {run.watermark or 'None (first run)'}")
    if run.watermark_updated:
        print(f"New watermark: {run.first_external_id}")
    if totals:
        print(f"Listings in store: {totals['total_listings']}")
        print(f"Phone numbers in store: {totals['total_phones']}")
        print(f"Images in store: {totals['total_images']}")
    if by_nature:
        print("By nature:")
        for nature, n in by_nature.most_common():
            print(f"  {nature}: {n}")
    if by_location:
        print("Top 10 locations:")
        for location, n in by_location.most_common(10):
            print(f"  {location}: {n}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Scrape new tunisie-annonce.com listings into Postgres")
    parser.add_argument("--max-pages", type=int, default=None, help="Index pages to walk at most")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    setup_logging(args.log_level)
    config = ScraperConfig()
    if args.max_pages is not None:
        try:
            config = replace(config, max_pages=args.max_pages)
        except ValueError as exc:
            parser.error(str(exc))

    fetcher = ListingFetcher(config)
    try:
        with open_store() as store:
            store.init_schema()
            run = ScrapeController(fetcher, store, config).run()
            try:
                totals = store.summary()
            except AnnonceAgentError as exc:
                logger.warning("Store totals unavailable: %s", exc)
                totals = {}
    except AnnonceAgentError as exc:
        logger.error("Scrape failed: %s", exc)
        sys.exit(1)
    finally:
        fetcher.close()
    print_summary(run, totals)


if __name__ == "__main__":
    main()
