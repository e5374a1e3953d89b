"""URL canonicalization: the identity key for cross-run deduplication."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

logger = logging.getLogger(__name__)

TRACKING_PREFIXES = ("utm_",)
TRACKING_PARAMS = {"fbclid", "gclid", "mc_cid", "mc_eid", "igshid"}


def _is_tracking(key: str) -> bool:
    k = key.lower()
    return k in TRACKING_PARAMS or k.startswith(TRACKING_PREFIXES)


def normalize_url(url: str) -> str:
    """Canonicalize a URL without touching the network.

    - Lowercase hostname
    - Remove fragment
    - Strip tracking query parameters
    - Sort remaining params by key (stable for repeated keys)
    - Collapse a bare "/" path to empty

    Unparseable input is returned stripped rather than raising.
    """
    if not url:
        return ""
    raw = url.strip()
    try:
        p = urlsplit(raw)
        if not p.scheme or not p.netloc:
            return raw
        netloc = p.netloc.lower()
        kept = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if not _is_tracking(k)]
        kept.sort(key=lambda kv: kv[0])
        path = "" if p.path == "/" else p.path
        return urlunsplit((p.scheme.lower(), netloc, path, urlencode(kept), ""))
    except ValueError:
        return raw


def host_of(url: str) -> str:
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


class Canonicalizer:
    """
    Per-run canonicalizer. Redirect-wrapper links from aggregator hosts are
    resolved once with a HEAD request and memoized; everything else is pure.
    """

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        aggregator_domains: Iterable[str] = ("news.google.com",),
        timeout: float = 10.0,
    ) -> None:
        self._session = session or requests.Session()
        self._aggregators = {d.lower() for d in aggregator_domains}
        self._timeout = timeout
        self._resolved: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.failures = 0

    def is_aggregator(self, url: str) -> bool:
        host = host_of(url)
        return any(host == d or host.endswith("." + d) for d in self._aggregators)

    def resolve(self, url: str) -> str:
        """Follow a wrapper link's redirects once; the original URL on failure."""
        with self._lock:
            if url in self._resolved:
                return self._resolved[url]
        target = url
        try:
            resp = self._session.head(url, allow_redirects=True, timeout=self._timeout)
            if 200 <= resp.status_code < 400 and resp.url:
                target = resp.url
        except requests.RequestException as e:
            self.failures += 1
            logger.debug("Redirect resolution failed for %s: %s", url, e)
        with self._lock:
            self._resolved[url] = target
        return target

    def canonicalize(self, url: str) -> str:
        if not url:
            return ""
        url = url.strip()
        if self.is_aggregator(url):
            url = self.resolve(url)
        return normalize_url(url)

    __call__ = canonicalize
