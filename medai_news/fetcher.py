from __future__ import annotations

import concurrent.futures as _fut
import logging
from typing import Iterable, List, Optional, Tuple

import requests

from .config import USER_AGENT
from .exceptions import FeedFetchError

logger = logging.getLogger(__name__)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"


def build_session(user_agent: str = USER_AGENT) -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent})
    return session


def fetch_feed(url: str, *, session: Optional[requests.Session] = None, timeout: float = 15.0) -> str:
    """
    Fetch a single feed URL and return the raw document text.

    Raises FeedFetchError on transport errors, non-2xx responses, or an empty body.
    """
    sess = session or build_session()
    try:
        resp = sess.get(url, timeout=timeout, headers={"Accept": FEED_ACCEPT})
    except requests.RequestException as e:
        raise FeedFetchError(f"Failed to fetch feed: {url} ({e})") from e

    if not 200 <= resp.status_code < 300:
        raise FeedFetchError(f"Feed returned HTTP {resp.status_code}: {url}")
    text = resp.text or ""
    if not text.strip():
        raise FeedFetchError(f"Feed is empty: {url}")
    return text


def fetch_many(
    urls: Iterable[str],
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 15.0,
    max_workers: int = 4,
) -> Tuple[List[Tuple[str, str]], int]:
    """
    Fetch multiple feeds and return `((url, document), ...)` in the given URL order,
    plus the number of endpoints that failed.

    Failures on individual URLs are logged and skipped; they never abort the batch.
    """
    url_list = [u.strip() for u in urls if u and u.strip()]
    sess = session or build_session()
    docs: List[Optional[str]] = [None] * len(url_list)
    failures = 0

    with _fut.ThreadPoolExecutor(max_workers=max(1, max_workers)) as ex:
        futures = {ex.submit(fetch_feed, u, session=sess, timeout=timeout): i for i, u in enumerate(url_list)}
        for fu in _fut.as_completed(futures):
            i = futures[fu]
            try:
                docs[i] = fu.result()
            except FeedFetchError as e:
                failures += 1
                logger.warning("Skipping feed: %s", e)

    out = [(u, d) for u, d in zip(url_list, docs) if d is not None]
    return out, failures
