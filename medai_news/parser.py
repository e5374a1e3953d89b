from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from feedparser.datetimes import _parse_date

# Entry framing: RSS <item> and Atom <entry>. Scanned, not DOM-parsed, so broken
# markup elsewhere in the document does not lose the whole feed.
_BLOCK_RE = re.compile(r"<(item|entry)(?:\s[^>]*)?>(.*?)</\1\s*>", re.S | re.I)
_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.S)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_ENTITY_RE = re.compile(r"&(?:[a-z]+|#\d+|#x[0-9a-f]+);", re.I)
_LINK_TAG_RE = re.compile(r"<link\s([^>]*?)/?>", re.I)
_ATTR_RE = re.compile(r"""([\w:-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_MEDIA_TAG_RE = re.compile(r"<(media:content|media:thumbnail|enclosure)\s([^>]*?)/?>", re.I)
_TITLE_SUFFIX_RE = re.compile(r"^(.*?)\s+-\s+([^-]+)$", re.S)

ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&apos;": "'",
    "&#x27;": "'",
    "&nbsp;": " ",
}

_DATE_TAGS = ("pubDate", "published", "updated", "dc:date")
_DESCRIPTION_TAGS = ("description", "summary", "content:encoded", "content")

_tag_patterns: Dict[str, "re.Pattern[str]"] = {}


def _tag_re(name: str) -> "re.Pattern[str]":
    pat = _tag_patterns.get(name)
    if pat is None:
        n = re.escape(name)
        pat = re.compile(rf"<{n}(?:\s[^>]*[^/>])?\s*>(.*?)</{n}\s*>", re.S | re.I)
        _tag_patterns[name] = pat
    return pat


def decode_entities(text: str) -> str:
    """Decode the fixed entity set; unknown entities are left as-is."""
    return _ENTITY_RE.sub(lambda m: ENTITIES.get(m.group(0).lower(), m.group(0)), text)


def strip_cdata(text: str) -> str:
    return _CDATA_RE.sub(lambda m: m.group(1), text)


def strip_html(text: str) -> str:
    return _WS_RE.sub(" ", _TAG_RE.sub(" ", text)).strip()


def _clean(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return strip_html(decode_entities(strip_cdata(raw)))


def _first_tag(block: str, names) -> Optional[str]:
    for name in names:
        m = _tag_re(name).search(block)
        if m and m.group(1).strip():
            return m.group(1)
    return None


def _atom_link(block: str) -> Optional[str]:
    fallback = None
    for m in _LINK_TAG_RE.finditer(block):
        attrs = {k.lower(): (v1 or v2) for k, v1, v2 in _ATTR_RE.findall(m.group(1))}
        href = (attrs.get("href") or "").strip()
        if not href:
            continue
        rel = (attrs.get("rel") or "alternate").lower()
        if rel == "alternate":
            return href
        fallback = fallback or href
    return fallback


def _looks_like_url(s: str) -> bool:
    return s.startswith("http://") or s.startswith("https://")


def _is_image_media(tag: str, attrs: Dict[str, str]) -> bool:
    kind = (attrs.get("type") or "").lower()
    if tag == "media:thumbnail":
        return True
    if tag == "enclosure":
        return kind.startswith("image/")
    medium = (attrs.get("medium") or "").lower()
    if medium:
        return medium == "image"
    return not kind or kind.startswith("image/")


def feed_image(block: str) -> Optional[str]:
    """
    Image the feed itself attaches to an entry: media:content, then
    media:thumbnail, then an image enclosure. None when there is none.
    """
    found: Dict[str, str] = {}
    for m in _MEDIA_TAG_RE.finditer(block):
        tag = m.group(1).lower()
        if tag in found:
            continue
        attrs = {k.lower(): (v1 or v2) for k, v1, v2 in _ATTR_RE.findall(m.group(2))}
        url = decode_entities(attrs.get("url") or "").strip()
        if _looks_like_url(url) and _is_image_media(tag, attrs):
            found[tag] = url
    for tag in ("media:content", "media:thumbnail", "enclosure"):
        if tag in found:
            return found[tag]
    return None


def _to_datetime(raw: Optional[str]) -> Optional[datetime]:
    """Parse RFC 822 / ISO 8601 feed dates to aware UTC; None when unparseable."""
    if not raw:
        return None
    parsed = _parse_date(_clean(raw))
    if parsed is None:
        return None
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def clean_title(title: str) -> Tuple[str, Optional[str]]:
    """
    Split aggregator-style "Headline - Publisher" titles.

    The suffix is only taken as a publisher when the remaining headline is longer
    than 20 characters and the suffix is a short, URL-free name.
    """
    m = _TITLE_SUFFIX_RE.match(title)
    if not m:
        return title, None
    head, tail = m.group(1).strip(), m.group(2).strip()
    if len(head) > 20 and tail and len(tail) < 50 and "http" not in tail:
        return head, tail
    return title, None


def _host(url: str) -> Optional[str]:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return None
    if host.startswith("www."):
        host = host[4:]
    return host or None


def iter_entry_blocks(document: str) -> Iterator[str]:
    for m in _BLOCK_RE.finditer(document):
        yield m.group(2)


def channel_title(document: str) -> Optional[str]:
    m = _BLOCK_RE.search(document)
    head = document[: m.start()] if m else document
    raw = _first_tag(head, ("title",))
    title = _clean(raw)
    return title or None


def parse_entry(block: str, *, now: datetime, feed_title: Optional[str] = None,
                feed_url: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Map one <item>/<entry> block to a dict with common fields.
    Fields: title, description, link, source, published_at, guid, feed_url, image_url.
    Returns None when the entry has no usable title or link.
    """
    raw_title = _clean(_first_tag(block, ("title",)))
    if not raw_title:
        return None

    link = _clean(_first_tag(block, ("link",)))
    if not _looks_like_url(link):
        link = (_atom_link(block) or "").strip()
    guid = _clean(_first_tag(block, ("guid", "id"))) or None
    if not _looks_like_url(link) and guid and _looks_like_url(guid):
        link = guid
    if not _looks_like_url(link):
        return None

    title, suffix_source = clean_title(raw_title)
    source = (
        suffix_source
        or _clean(_first_tag(block, ("source",)))
        or _host(link)
        or feed_title
        or "unknown"
    )

    published_at = _to_datetime(_first_tag(block, _DATE_TAGS)) or now

    return {
        "title": title,
        "description": _clean(_first_tag(block, _DESCRIPTION_TAGS)),
        "link": link,
        "source": source,
        "published_at": published_at,
        "guid": guid,
        "feed_url": feed_url,
        "image_url": feed_image(block),
    }


def parse_document(
    document: str,
    *,
    feed_url: Optional[str] = None,
    now: Optional[datetime] = None,
    max_items: Optional[int] = None,
    min_title_chars: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Parse a raw RSS/Atom document into entry dicts.

    Returns (entries, dropped) where dropped counts malformed or too-short entries.
    At most `max_items` entries are returned.
    """
    now = now or datetime.now(timezone.utc)
    feed_title = channel_title(document)
    out: List[Dict[str, Any]] = []
    dropped = 0
    for block in iter_entry_blocks(document):
        if max_items is not None and len(out) >= max_items:
            break
        entry = parse_entry(block, now=now, feed_title=feed_title, feed_url=feed_url)
        if entry is None or len(entry["title"]) < min_title_chars:
            dropped += 1
            continue
        out.append(entry)
    return out, dropped
