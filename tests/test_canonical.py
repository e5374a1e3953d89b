from __future__ import annotations

import requests

from medai_news.canonical import Canonicalizer, host_of, normalize_url

from conftest import DummyResponse, FakeSession


def test_normalize_url_strips_tracking_and_fragment() -> None:
    url = "HTTPS://WWW.Example.COM/News/Story?utm_source=x&b=2&fbclid=y&a=1#comments"
    assert normalize_url(url) == "https://www.example.com/News/Story?a=1&b=2"


def test_normalize_url_keeps_repeated_keys_in_order() -> None:
    assert normalize_url("https://example.com/p?tag=b&id=7&tag=a") == "https://example.com/p?id=7&tag=b&tag=a"


def test_normalize_url_drops_bare_slash_path() -> None:
    assert normalize_url("https://example.com/") == "https://example.com"


def test_normalize_url_is_idempotent() -> None:
    once = normalize_url("https://Example.com/a/?utm_medium=rss&z=1&y=2#top")
    assert normalize_url(once) == once


def test_normalize_url_returns_unparseable_input() -> None:
    assert normalize_url("  not a url  ") == "not a url"
    assert normalize_url("") == ""


def test_host_of_strips_www() -> None:
    assert host_of("https://www.statnews.com/2025/01/06/x") == "statnews.com"


def test_canonicalizer_resolves_aggregator_links_once() -> None:
    wrapper = "https://news.google.com/rss/articles/abc?oc=5"
    session = FakeSession(heads={
        wrapper: DummyResponse(url="https://www.publisher.com/story?utm_campaign=feed"),
    })
    canon = Canonicalizer(session=session, aggregator_domains=["news.google.com"])

    assert canon(wrapper) == "https://www.publisher.com/story"
    assert canon(wrapper) == "https://www.publisher.com/story"
    assert session.requested == [wrapper]


def test_canonicalizer_leaves_publisher_links_offline() -> None:
    session = FakeSession()
    canon = Canonicalizer(session=session)

    assert canon("https://publisher.com/a?utm_source=rss") == "https://publisher.com/a"
    assert session.requested == []


def test_canonicalizer_keeps_wrapper_when_resolution_fails() -> None:
    wrapper = "https://news.google.com/rss/articles/zzz"
    session = FakeSession(heads={wrapper: requests.ConnectionError("boom")})
    canon = Canonicalizer(session=session)

    assert canon(wrapper) == wrapper
    assert canon.failures == 1
    assert canon.is_aggregator(wrapper)
