"""Page enrichment: fetch the article page once, pull a body excerpt and a lead image.

Policy:
- Pages are fetched with the crawler's user agent, never from private hosts.
- Anything that goes wrong while fetching means "no content"; the item still
  gets an excerpt (description or title) and an image (feed, search or placeholder).
"""

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup, UnicodeDammit
from bs4.dammit import EncodingDetector

from .config import USER_AGENT
from .images import ImageChoice, feed_image, find_meta_image, placeholder_image, search_stock_photo
from .models import CandidateItem
from .strategies import Strategy, run_chain

logger = logging.getLogger(__name__)

MAX_PAGE_BYTES = 2_000_000
MIN_PARAGRAPH_CHARS = 40
MAX_PARAGRAPHS = 6
MIN_BODY_CHARS = 200
MIN_DESCRIPTION_CHARS = 40

STRIP_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form")
_CONTAINER_CLASS_RE = re.compile(r"content|article|story|post", re.I)
_BOILERPLATE_RE = re.compile(
    r"cookie|subscribe|newsletter|advertisement|sign up|all rights reserved|javascript",
    re.I,
)
_CHARSET_RE = re.compile(r"""charset\s*=\s*["']?([\w.:-]+)""", re.I)

_PRIVATE_NETS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


@dataclass(frozen=True)
class EnrichmentResult:
    body_excerpt: str
    image_url: str
    image_attribution: str = ""
    image_origin: str = "placeholder"
    page_fetched: bool = False


def _is_private_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(ip.version == net.version and ip in net for net in _PRIVATE_NETS)


def validate_fetch_url(url: str) -> Optional[str]:
    """Return an error string if the URL should not be fetched."""
    try:
        p = urlparse(url)
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower()
    if not host:
        return "missing_host"
    if host in ("localhost", "localhost.localdomain"):
        return "blocked_host"
    if _is_private_ip(host):
        return "blocked_private_ip"
    return None


def declared_charset(content_type: Optional[str]) -> Optional[str]:
    """Charset named in a Content-Type header, if any."""
    m = _CHARSET_RE.search(content_type or "")
    return m.group(1).lower() if m else None


def _trim_partial_char(data: bytes) -> bytes:
    # a cut inside a multi-byte UTF-8 sequence leaves up to 3 dangling bytes
    for i in range(1, min(4, len(data)) + 1):
        b = data[-i]
        if b < 0x80:
            return data
        if b >= 0xC0:
            return data[:-i]
    return data


def decode_page(content: bytes, charset: Optional[str] = None) -> str:
    """
    Decode page bytes. Tried in order: the charset from the response header,
    the document's own <meta charset>, UTF-8, then detection.
    """
    if not content:
        return ""
    declared = EncodingDetector.find_declared_encoding(content, is_html=True)
    tried = [c for c in (charset, declared, "utf-8") if c]
    dammit = UnicodeDammit(content, tried, is_html=True)
    if dammit.unicode_markup is None:
        return content.decode("utf-8", errors="replace")
    return dammit.unicode_markup


def _qualifies(text: str) -> bool:
    return len(text) >= MIN_PARAGRAPH_CHARS and not _BOILERPLATE_RE.search(text)


def _paragraphs(node) -> List[str]:
    out = []
    for p in node.find_all("p"):
        text = " ".join(p.get_text(" ", strip=True).split())
        if _qualifies(text):
            out.append(text)
    return out


def extract_body(html: str) -> str:
    """Main-content paragraphs of an article page, capped; "" if none qualify."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(list(STRIP_TAGS)):
        tag.decompose()

    containers = list(soup.find_all(["article", "main"]))
    containers += soup.find_all(attrs={"itemprop": "articleBody"})
    containers += soup.find_all(class_=_CONTAINER_CLASS_RE)

    best: List[str] = []
    best_len = 0
    for node in containers:
        paras = _paragraphs(node)
        total = sum(len(p) for p in paras)
        if total > best_len:
            best, best_len = paras, total
    if not best and soup.body is not None:
        best = _paragraphs(soup.body)
    return "\n\n".join(best[:MAX_PARAGRAPHS])


class Enricher:
    """
    One page fetch per item, shared by body extraction and meta-image discovery.
    Image selection is a strategy chain; the placeholder pool ends it, so an
    image is always produced.
    """

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        pexels_api_key: Optional[str] = None,
        timeout: float = 15.0,
        user_agent: str = USER_AGENT,
        max_bytes: int = MAX_PAGE_BYTES,
    ) -> None:
        self._session = session or requests.Session()
        self._pexels_key = pexels_api_key
        self._timeout = timeout
        self._user_agent = user_agent
        self._max_bytes = max_bytes

    def fetch_page(self, url: str) -> Optional[str]:
        """Page HTML, or None when blocked, unreachable or non-2xx. Oversized bodies are truncated."""
        err = validate_fetch_url(url)
        if err:
            logger.warning("Not fetching %s: %s", url, err)
            return None
        try:
            with self._session.get(
                url,
                headers={"User-Agent": self._user_agent, "Accept": "text/html,application/xhtml+xml"},
                timeout=self._timeout,
                allow_redirects=True,
                stream=True,
            ) as resp:
                if not 200 <= resp.status_code < 300:
                    logger.debug("Page %s returned HTTP %s", url, resp.status_code)
                    return None
                charset = declared_charset(resp.headers.get("Content-Type"))
                content = b""
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    if not chunk:
                        continue
                    content += chunk
                    if len(content) >= self._max_bytes:
                        content = _trim_partial_char(content[: self._max_bytes])
                        break
        except requests.RequestException as e:
            logger.warning("Page fetch failed for %s: %s", url, e)
            return None
        return decode_page(content, charset)

    def _image_chain(self, html: Optional[str], page_url: str, category: str,
                     feed_image_url: str = "") -> List[Strategy]:
        def meta(key: str):
            choice = find_meta_image(html or "", page_url)
            return choice, choice is not None

        def from_feed(key: str):
            choice = feed_image(feed_image_url)
            return choice, choice is not None

        def search(key: str):
            choice = search_stock_photo(category, api_key=self._pexels_key, key=key,
                                        session=self._session, timeout=self._timeout)
            return choice, choice is not None

        return [
            Strategy(name="meta", attempt=meta, available=lambda: bool(html)),
            Strategy(name="feed", attempt=from_feed, available=lambda: bool(feed_image_url)),
            Strategy(name="search", attempt=search, available=lambda: bool(self._pexels_key)),
            Strategy(name="placeholder", attempt=lambda key: (placeholder_image(category, key), True)),
        ]

    def choose_image(self, html: Optional[str], page_url: str, category: str, key: str,
                     feed_image_url: str = "") -> ImageChoice:
        result = run_chain(self._image_chain(html, page_url, category, feed_image_url), key)
        return result.value or placeholder_image(category, key)

    def enrich(self, item: CandidateItem, category: str) -> EnrichmentResult:
        page_url = item.canonical_url or item.raw_url
        html = self.fetch_page(page_url)

        body = extract_body(html) if html else ""
        if len(body) < MIN_BODY_CHARS:
            description = (item.description or "").strip()
            body = description if len(description) >= MIN_DESCRIPTION_CHARS else item.title

        image = self.choose_image(html, page_url, category, page_url, item.feed_image_url)
        return EnrichmentResult(
            body_excerpt=body,
            image_url=image.url,
            image_attribution=image.attribution,
            image_origin=image.origin,
            page_fetched=html is not None,
        )
