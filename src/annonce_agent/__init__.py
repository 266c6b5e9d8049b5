"""Incremental scraper for tunisie-annonce.com real-estate listings."""
