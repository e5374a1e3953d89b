"""Lead-image discovery: page meta tags, stock-photo search, placeholder pool."""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import parse_qsl, urljoin, urlsplit

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

PEXELS_SEARCH_URL = "https://api.pexels.com/v1/search"
MIN_IMAGE_DIMENSION = 200

META_IMAGE_KEYS = (
    ("property", "og:image"),
    ("property", "og:image:secure_url"),
    ("property", "og:image:url"),
    ("name", "twitter:image"),
    ("name", "twitter:image:src"),
    ("property", "twitter:image"),
)

_REJECT_URL_RE = re.compile(
    r"logo|sprite|icon|favicon|placeholder|avatar|blank|spacer|pixel|default[-_]?(?:image|img|share)",
    re.I,
)
_DIM_IN_PATH_RE = re.compile(r"(?<!\d)(\d{1,4})x(\d{1,4})(?!\d)")

SENSITIVE_ALT_WORDS = (
    "gun", "weapon", "war", "soldier", "funeral", "coffin", "corpse", "death", "blood", "wound",
    "injury", "nude", "naked", "lingerie", "cigarette", "smoking", "alcohol", "beer", "wine",
    "cannabis", "marijuana", "pizza", "burger", "cake", "food", "dog", "cat", "wedding", "fashion",
)
_SENSITIVE_RE = re.compile(r"(?<!\w)(?:" + "|".join(SENSITIVE_ALT_WORDS) + r")s?(?!\w)", re.I)

CATEGORY_SEARCH_TERMS: Dict[str, str] = {
    "Diagnostics": "medical diagnosis technology",
    "Medical Imaging": "mri scan radiology",
    "Surgery": "surgical robot operating room",
    "Drug Discovery": "pharmaceutical laboratory research",
    "Genomics": "dna sequencing laboratory",
    "Patient Care": "doctor patient hospital",
    "Clinical Trials": "clinical research laboratory",
    "Telemedicine": "telemedicine video consultation",
    "Research": "medical research laboratory",
}

_PEXELS = "https://images.pexels.com/photos/{id}/pexels-photo-{id}.jpeg?auto=compress&cs=tinysrgb&w=1200"

PLACEHOLDER_POOL: Dict[str, List[str]] = {
    "Diagnostics": [_PEXELS.format(id=i) for i in (356040, 433267, 4021775, 3952048, 6129249, 4173251)],
    "Medical Imaging": [_PEXELS.format(id=i) for i in (236380, 263337, 247786, 1350560, 4270088, 7088526)],
    "Surgery": [_PEXELS.format(id=i) for i in (1250655, 2507016, 3845810, 4225880, 4269491, 8460356)],
    "Drug Discovery": [_PEXELS.format(id=i) for i in (3683055, 2280571, 3912979, 4033148, 3735747, 208518)],
    "Genomics": [_PEXELS.format(id=i) for i in (3825527, 3912980, 1366942, 2280547, 256262, 1366944)],
    "Patient Care": [_PEXELS.format(id=i) for i in (127873, 263402, 339620, 4226140, 5699456, 5726790)],
    "Clinical Trials": [_PEXELS.format(id=i) for i in (3825586, 2280568, 3683098, 2280549, 3825346, 3861458)],
    "Telemedicine": [_PEXELS.format(id=i) for i in (4386467, 5214997, 2324846, 4269707, 5215024, 7579831)],
    "Research": [_PEXELS.format(id=i) for i in (532803, 606506, 1366945, 1366946, 5726837, 7089093)],
}
PLACEHOLDER_ATTRIBUTION = "Photo via Pexels"


@dataclass(frozen=True)
class ImageChoice:
    url: str
    attribution: str = ""
    origin: str = "meta"


def stable_index(key: str, n: int) -> int:
    """Deterministic index in [0, n) derived from `key` (stable across processes)."""
    if n <= 0:
        return 0
    digest = hashlib.sha1((key or "").encode("utf-8")).hexdigest()
    return int(digest, 16) % n


def _too_small(url: str) -> bool:
    parts = urlsplit(url)
    for k, v in parse_qsl(parts.query):
        if k.lower() in ("w", "width", "h", "height") and v.isdigit() and int(v) < MIN_IMAGE_DIMENSION:
            return True
    for w, h in _DIM_IN_PATH_RE.findall(parts.path):
        if int(w) < MIN_IMAGE_DIMENSION and int(h) < MIN_IMAGE_DIMENSION:
            return True
    return False


def is_content_image(url: str, *, width: Optional[str] = None, height: Optional[str] = None) -> bool:
    """Reject logos, sprites, icons, vector/animated formats and tiny images."""
    if not url or not url.startswith(("http://", "https://")):
        return False
    path = urlsplit(url).path.lower()
    if path.endswith((".svg", ".gif", ".ico")):
        return False
    if _REJECT_URL_RE.search(url):
        return False
    for dim in (width, height):
        if dim and dim.strip().isdigit() and int(dim) < MIN_IMAGE_DIMENSION:
            return False
    return not _too_small(url)


def _meta_content(soup: BeautifulSoup, attr: str, key: str) -> Optional[str]:
    tag = soup.find("meta", attrs={attr: key})
    if tag is None:
        return None
    value = (tag.get("content") or "").strip()
    return value or None


def find_meta_image(html: str, page_url: str) -> Optional[ImageChoice]:
    """First acceptable Open Graph / Twitter-card / image_src image on the page."""
    if not html:
        return None
    soup = BeautifulSoup(html, "lxml")
    width = _meta_content(soup, "property", "og:image:width")
    height = _meta_content(soup, "property", "og:image:height")

    candidates: List[str] = []
    for attr, key in META_IMAGE_KEYS:
        value = _meta_content(soup, attr, key)
        if value:
            candidates.append(value)
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        rels = rel if isinstance(rel, list) else [rel]
        if "image_src" in [r.lower() for r in rels]:
            candidates.append(link["href"].strip())

    for raw in candidates:
        url = "https:" + raw if raw.startswith("//") else urljoin(page_url, raw)
        if is_content_image(url, width=width, height=height):
            return ImageChoice(url=url, origin="meta")
    return None


def feed_image(url: str) -> Optional[ImageChoice]:
    """The image the feed attached to the entry, unless it looks like a logo or icon."""
    url = (url or "").strip()
    if url.startswith("//"):
        url = "https:" + url
    if not url.startswith(("http://", "https://")) or not is_content_image(url):
        return None
    return ImageChoice(url=url, origin="feed")


def alt_is_acceptable(alt: str) -> bool:
    return not _SENSITIVE_RE.search(alt or "")


def search_stock_photo(
    category: str,
    *,
    api_key: Optional[str],
    key: str,
    session: Optional[requests.Session] = None,
    timeout: float = 10.0,
) -> Optional[ImageChoice]:
    """
    Query Pexels for category-specific terms and pick one acceptable photo,
    deterministically from `key` (usually the canonical URL).
    Returns None without a key or on any failure.
    """
    if not api_key:
        return None
    sess = session or requests.Session()
    query = CATEGORY_SEARCH_TERMS.get(category, CATEGORY_SEARCH_TERMS["Research"])
    try:
        resp = sess.get(
            PEXELS_SEARCH_URL,
            params={"query": query, "per_page": 15, "orientation": "landscape"},
            headers={"Authorization": api_key},
            timeout=timeout,
        )
        if resp.status_code != 200:
            logger.warning("Image search returned HTTP %s for %r", resp.status_code, query)
            return None
        data = resp.json() or {}
    except (requests.RequestException, ValueError) as e:
        logger.warning("Image search failed for %r: %s", query, e)
        return None

    photos = []
    for p in data.get("photos") or []:
        if not isinstance(p, dict):
            continue
        src = p.get("src") or {}
        url = src.get("landscape") or src.get("large") or src.get("original")
        if url and alt_is_acceptable(p.get("alt") or ""):
            photos.append((url, p.get("photographer") or ""))
    if not photos:
        return None
    url, photographer = photos[stable_index(key, len(photos))]
    attribution = f"Photo by {photographer} on Pexels" if photographer else PLACEHOLDER_ATTRIBUTION
    return ImageChoice(url=url, attribution=attribution, origin="search")


def placeholder_image(category: str, key: str) -> ImageChoice:
    """Category-tagged placeholder; always returns an image."""
    pool = PLACEHOLDER_POOL.get(category) or PLACEHOLDER_POOL["Research"]
    return ImageChoice(url=pool[stable_index(key, len(pool))], attribution=PLACEHOLDER_ATTRIBUTION,
                       origin="placeholder")
