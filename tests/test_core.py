from __future__ import annotations

from datetime import datetime, timezone

import pytest

from medai_news.config import PipelineConfig
from medai_news.core import Pipeline
from medai_news.exceptions import ConfigError, StoreUnavailableError

from conftest import DummyResponse, FakeSession, InMemoryTable, StubProvider

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)
FEED = "https://feed.example/rss"

FEED_XML = """<rss><channel><title>Medical AI Wire</title>
<item><title>AI model detects pancreatic cancer on routine CT scans - Health Daily</title>
  <link>https://pub.example/pancreas?utm_source=rss</link>
  <pubDate>Mon, 06 Jan 2025 09:00:00 GMT</pubDate>
  <description>A peer-reviewed study in a large patient cohort.</description></item>
<item><title>Hospital network rolls out machine learning sepsis alerts - Care Times</title>
  <link>https://pub.example/sepsis</link>
  <pubDate>Mon, 06 Jan 2025 08:00:00 GMT</pubDate></item>
<item><title>Quarterly earnings beat expectations at retail chain</title>
  <link>https://pub.example/retail</link>
  <pubDate>Mon, 06 Jan 2025 11:00:00 GMT</pubDate></item>
<item><title>AI model detects pancreatic cancer on routine CT scans - Mirror Site</title>
  <link>https://pub.example/pancreas#top</link>
  <pubDate>Sun, 05 Jan 2025 09:00:00 GMT</pubDate></item>
</channel></rss>"""


def _config(**kw) -> PipelineConfig:
    cfg = PipelineConfig(feeds=[FEED], take_top=2, retain=2, item_delay_sec=0, max_workers=2)
    for k, v in kw.items():
        setattr(cfg, k, v)
    return cfg


def _pipeline(table, cfg=None, session=None, providers=()) -> Pipeline:
    session = session or FakeSession({FEED: DummyResponse(FEED_XML)})
    return Pipeline(cfg or _config(), table, session=session, providers=list(providers), now=lambda: NOW)


def test_run_selects_top_items_and_writes_them(table: InMemoryTable) -> None:
    stats = _pipeline(table).run()

    assert (stats.gathered, stats.candidates, stats.selected) == (4, 3, 2)
    assert (stats.inserted, stats.updated, stats.written) == (2, 0, 2)
    assert sorted(r["source_url"] for r in table.rows) == ["https://pub.example/pancreas", "https://pub.example/sepsis"]

    row = next(r for r in table.rows if r["source_url"] == "https://pub.example/pancreas")
    assert row["title"] == "AI model detects pancreatic cancer on routine CT scans"
    assert row["source"] == "Health Daily"
    assert row["category"] == "Diagnostics"
    assert row["summary"] and row["content"] and row["image_url"]
    # page fetches failed (404) in this setup
    assert stats.errors["network"] == 2


def test_second_run_updates_instead_of_duplicating(table: InMemoryTable) -> None:
    _pipeline(table).run()
    stats = _pipeline(table).run()

    assert (stats.inserted, stats.updated) == (0, 2)
    assert len(table.rows) == 2
    assert stats.deduped == 0


def test_existing_rows_reuse_stored_content_and_image(table: InMemoryTable) -> None:
    table.seed(source_url="https://pub.example/pancreas", content="Stored body " * 30,
               image_url="https://img.example/stored.jpg", published_at=NOW.isoformat())
    session = FakeSession({FEED: DummyResponse(FEED_XML)})

    _pipeline(table, session=session).run()

    assert "https://pub.example/pancreas" not in session.requested
    assert "https://pub.example/sepsis" in session.requested
    row = next(r for r in table.rows if r["source_url"] == "https://pub.example/pancreas")
    assert row["image_url"] == "https://img.example/stored.jpg"
    assert row["content"] == ("Stored body " * 30).strip()


def test_prune_and_provider_output(table: InMemoryTable) -> None:
    for i in range(5):
        table.seed(source_url=f"https://old.example/{i}", published_at=f"2024-12-0{i + 1}T00:00:00+00:00")
    text = "A generated paragraph that is comfortably longer than the fifty character minimum."
    provider = StubProvider("llm", replies=["Genomics", text, text, "Surgery", text, text])

    stats = _pipeline(table, providers=[provider], cfg=_config(max_workers=1)).run()

    assert stats.pruned == 5
    assert len(table.rows) == 2
    assert {r["category"] for r in table.rows} == {"Genomics", "Surgery"}
    assert all(r["summary"] == text for r in table.rows)


def test_unreachable_store_is_fatal_before_fetching() -> None:
    table = InMemoryTable()
    table.down = True
    session = FakeSession({FEED: DummyResponse(FEED_XML)})

    with pytest.raises(StoreUnavailableError):
        _pipeline(table, session=session).run()
    assert session.requested == []


def test_invalid_config_is_fatal_before_touching_the_store(table: InMemoryTable) -> None:
    session = FakeSession({FEED: DummyResponse(FEED_XML)})

    with pytest.raises(ConfigError):
        _pipeline(table, cfg=_config(feeds=[]), session=session).run()
    assert table.calls == []
    assert session.requested == []


def test_zero_take_top_is_rejected(table: InMemoryTable) -> None:
    with pytest.raises(ConfigError):
        _pipeline(table, cfg=_config(take_top=0)).run()
    assert table.rows == []


def test_failed_feed_is_counted_not_fatal(table: InMemoryTable) -> None:
    session = FakeSession({FEED: DummyResponse("", status_code=500)})

    stats = _pipeline(table, session=session).run()

    assert stats.selected == 0
    assert stats.errors["network"] == 1
    assert table.rows == []


def test_items_past_the_run_deadline_are_abandoned(table: InMemoryTable) -> None:
    stats = _pipeline(table, cfg=_config(run_timeout_sec=1e-6)).run()

    assert stats.abandoned == 2
    assert stats.written == 0
