from __future__ import annotations

from datetime import datetime, timedelta, timezone

from medai_news.config import AI_TERMS, DOMAIN_TERMS, PROMO_TERMS, RIGOR_TERMS
from medai_news.dedup import deduplicate
from medai_news.models import CandidateItem
from medai_news.ranker import TermSets, compile_terms, rank, score

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)
TERMS = TermSets.build(AI_TERMS, DOMAIN_TERMS, RIGOR_TERMS, PROMO_TERMS)


def _item(title: str, url: str, *, age_hours: float = 0.0, description: str = "") -> CandidateItem:
    return CandidateItem(
        title=title,
        raw_url=url,
        canonical_url=url,
        reported_source="Example",
        published_at=NOW - timedelta(hours=age_hours),
        description=description,
    )


def test_compile_terms_matches_words_and_stems() -> None:
    pattern = compile_terms(["ai", "radiolog*"])

    assert pattern.search("New AI tool")
    assert pattern.search("radiologists welcome it")
    assert not pattern.search("said the chair")  # "ai" inside a word
    assert compile_terms([]) is None


def test_score_adds_signals() -> None:
    item = _item("AI study finds deep learning helps clinicians", "https://pub.example/a")

    # ai 5 + domain 4 (clinic*) + rigor 2 + publisher 1 + recency 3
    assert score(item, TERMS, now=NOW, freshness_days=3) == 15.0


def test_score_penalizes_promotional_items_on_aggregator() -> None:
    item = _item("Webinar: AI for hospital leaders", "https://news.google.com/rss/articles/x",
                 age_hours=24 * 5)

    total = score(item, TERMS, now=NOW, freshness_days=3,
                  is_aggregator=lambda url: "news.google.com" in url)

    assert total == 5 + 4 - 3


def test_rank_orders_by_relevance_and_drops_off_topic() -> None:
    on_topic = _item("AI model improves breast cancer screening in randomized trial",
                     "https://pub.example/screening", age_hours=30)
    off_topic = _item("Stock market rallies on tech earnings", "https://pub.example/stocks")

    ranked = rank([off_topic, on_topic], TERMS, freshness_days=3, now=NOW)

    assert [c.canonical_url for c in ranked] == ["https://pub.example/screening", "https://pub.example/stocks"]
    assert ranked[0].relevance_score > ranked[1].relevance_score


def test_rank_breaks_ties_by_recency() -> None:
    older = _item("Machine learning in oncology", "https://pub.example/old", age_hours=100)
    newer = _item("Machine learning in oncology", "https://pub.example/new", age_hours=90)

    ranked = rank([older, newer], TERMS, freshness_days=3, now=NOW)

    assert [c.canonical_url for c in ranked] == ["https://pub.example/new", "https://pub.example/old"]


def test_rank_deduplicates_by_canonical_url() -> None:
    a = _item("AI diagnoses skin cancer", "https://pub.example/same", age_hours=5)
    b = _item("AI diagnoses skin cancer (updated)", "https://pub.example/same", age_hours=1)

    ranked = rank([a, b], TERMS, freshness_days=3, now=NOW)

    assert len(ranked) == 1
    assert ranked[0].title == "AI diagnoses skin cancer (updated)"


def test_deduplicate_first_seen_wins_full_tie() -> None:
    a = _item("Same headline for both copies", "https://pub.example/x")
    b = _item("Same headline, second copy", "https://pub.example/x")

    assert deduplicate([a, b]) == [a]


def test_headline_scenario_selects_ai_item() -> None:
    from medai_news.canonical import normalize_url
    from medai_news.normalizer import to_candidate
    from medai_news.parser import parse_document

    feed = (
        "<rss><channel>"
        "<item><title>AI diagnoses Lyme disease faster - BBC</title><link>https://bbc.example/lyme</link></item>"
        "<item><title>Unrelated cooking tip</title><link>https://food.example/tip</link></item>"
        "</channel></rss>"
    )
    entries, _ = parse_document(feed, now=NOW, min_title_chars=20)
    candidates = [to_candidate(e, normalize_url) for e in entries]

    ranked = rank(candidates, TERMS, freshness_days=3, now=NOW)
    top = ranked[:1]

    assert top[0].title == "AI diagnoses Lyme disease faster"
    assert top[0].reported_source == "BBC"
    assert top[0].relevance_score >= 5
    assert ranked[1].relevance_score < top[0].relevance_score
