"""HTML field extractors for tunisie-annonce.com index rows and detail pages.

Phone numbers are collected by several overlapping heuristics, each a plain
function returning raw candidate strings. The candidates are merged and run
through ``normalize_phone_number`` once, so a number found by more than one
heuristic still appears a single time.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, List, Optional, Sequence, Set, Union
from urllib.parse import parse_qs, urljoin, urlsplit

from scrapy import Selector

from annonce_agent.models import ListingRecord


INDEX_ROW_CSS = "tr.Tableau1"
MIN_ROW_CELLS = 13
EXTERNAL_ID_PARAM = "cod_ann"
PRO_MARKER = "icon_pro"
PHOTO_MARKER = "icon_camera"
IMAGE_PATH_MARKERS = ("/upload2/", "/photos/")
COUNTRY_CODE = "216"

# Local numbers are 8 digits, optionally preceded by +216/216 or a trunk 0.
# Grouped as 98765432, 98 765 432 or 98 76 54 32.
PHONE_PATTERN = re.compile(
    r"""
    (?<![\d+])
    (?:\+?216[\s.]?|0)?
    (?:
        \d{2}[\s.]?\d{3}[\s.]?\d{3}
      | \d{2}[\s.]\d{2}[\s.]\d{2}[\s.]\d{2}
    )
    (?!\d)
    """,
    re.VERBOSE,
)

RowLike = Union[str, Selector]
CandidateExtractor = Callable[[Selector], List[str]]


def _selector(html: Union[str, Selector]) -> Selector:
    if isinstance(html, Selector):
        return html
    return Selector(text=html or "<html></html>")


def _text(sel: Selector) -> str:
    return "".join(sel.xpath(".//text()").getall()).strip()


def normalize_phone_number(raw: Optional[str]) -> Optional[str]:
    """Reduce a phone string to its 8 local digits, or ``None`` if it isn't one.

    Accepted digit shapes: 8 digits, or the ``216`` country code followed by the
    local part (10 or 11 digits in total).
    """
    if not raw:
        return None
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 8:
        return digits
    if len(digits) in (10, 11) and digits.startswith(COUNTRY_CODE):
        return digits[-8:]
    return None


def contact_value_candidates(sel: Selector) -> List[str]:
    return [_text(el) for el in sel.css("span.da_contact_value")]


def tel_link_candidates(sel: Selector) -> List[str]:
    hrefs = sel.css('a[href^="tel:"]::attr(href)').getall()
    return [h[len("tel:"):].strip() for h in hrefs]


def phone_class_candidates(sel: Selector) -> List[str]:
    nodes = sel.css('[class*="phone"], [id*="phone"], [class*="contact"]')
    return [_text(el) for el in nodes]


def body_text_candidates(sel: Selector) -> List[str]:
    texts = sel.xpath(
        "//body//text()[not(ancestor::script) and not(ancestor::style)]"
    ).getall()
    return PHONE_PATTERN.findall(" ".join(texts))


PHONE_CANDIDATE_EXTRACTORS: Sequence[CandidateExtractor] = (
    contact_value_candidates,
    tel_link_candidates,
    phone_class_candidates,
    body_text_candidates,
)


def extract_phone_numbers(
    html: Optional[str],
    extractors: Iterable[CandidateExtractor] = PHONE_CANDIDATE_EXTRACTORS,
) -> Set[str]:
    """Return every valid phone number found on a detail page."""
    if not html:
        return set()
    sel = _selector(html)
    candidates: List[str] = []
    for extractor in extractors:
        candidates.extend(extractor(sel))
    phones: Set[str] = set()
    for candidate in candidates:
        normalized = normalize_phone_number(candidate)
        if normalized:
            phones.add(normalized)
    return phones


def is_valid_image_url(url: Optional[str]) -> bool:
    """Only listing photos qualify; site chrome and icons are rejected."""
    if not url:
        return False
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return False
    return all(marker in url for marker in IMAGE_PATH_MARKERS)


def _image_candidates(sel: Selector) -> List[str]:
    found: List[str] = list(sel.css("img::attr(src)").getall())
    for el in sel.css("[data-src], [data-image], [data-photo]"):
        value = (
            el.attrib.get("data-src")
            or el.attrib.get("data-image")
            or el.attrib.get("data-photo")
        )
        if value:
            found.append(value)
    for srcset in sel.css("picture source::attr(srcset)").getall():
        first = srcset.split(",")[0].strip().split()
        if first:
            found.append(first[0])
    return found


def extract_image_urls(html: Optional[str], base_url: str) -> List[str]:
    """Absolute listing photo URLs in the order they first appear."""
    if not html:
        return []
    images: List[str] = []
    for src in _image_candidates(_selector(html)):
        src = src.strip()
        if not src:
            continue
        absolute = urljoin(base_url, src)
        if is_valid_image_url(absolute) and absolute not in images:
            images.append(absolute)
    return images


def external_id_from_link(link: str) -> Optional[str]:
    values = parse_qs(urlsplit(link).query).get(EXTERNAL_ID_PARAM) or []
    for value in values:
        if value.strip():
            return value.strip()
    return None


def parse_listing_row(row: RowLike) -> Optional[ListingRecord]:
    """Parse one ``<tr>`` of the index table.

    Cells (0-based): 1 location, 3 nature, 5 property type, 7 title and link,
    9 price, 11 modification date. Footer rows, spacer rows and rows whose link
    carries no ``cod_ann`` give ``None``.
    """
    if isinstance(row, str):
        rows = Selector(text=f"<table>{row}</table>").css("tr")
        if not rows:
            return None
        row = rows[0]
    cells = row.xpath("./td")
    if len(cells) < MIN_ROW_CELLS:
        return None

    title_cell = cells[7]
    link = title_cell.css("a::attr(href)").get(default="").strip()
    external_id = external_id_from_link(link)
    if not external_id:
        return None
    title_markup = title_cell.get()

    return ListingRecord(
        external_id=external_id,
        location=_text(cells[1]),
        nature=_text(cells[3]),
        property_type=_text(cells[5]),
        title=_text(title_cell.css("a")[0]) if title_cell.css("a") else "",
        detail_link=link,
        price=_text(cells[9]).replace("\xa0", ""),
        date_modified=_text(cells[11]),
        has_photo=PHOTO_MARKER in title_markup,
        is_professional=PRO_MARKER in title_markup,
    )


def parse_index_page(html: Optional[str]) -> List[ListingRecord]:
    """All usable listing rows of an index page, in page order."""
    if not html:
        return []
    records: List[ListingRecord] = []
    for row in _selector(html).css(INDEX_ROW_CSS):
        record = parse_listing_row(row)
        if record is not None:
            records.append(record)
    return records
