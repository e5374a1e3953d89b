from __future__ import annotations

import concurrent.futures as _fut
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import requests

from .canonical import Canonicalizer
from .classifier import Classifier
from .config import PipelineConfig
from .enricher import EnrichmentResult, Enricher
from .exceptions import ParseError
from .fetcher import build_session, fetch_many
from .models import CandidateItem, EnrichedItem, PersistedArticle
from .normalizer import to_candidate
from .parser import parse_document
from .providers import RateLimiter, TextProvider, build_providers
from .ranker import TermSets, rank
from .store import ArticleTable, StoreGateway
from .summarizers import Summarizer

logger = logging.getLogger(__name__)

ERROR_CLASSES = ("network", "malformed", "provider", "schema", "store")


@dataclass
class RunStats:
    gathered: int = 0
    candidates: int = 0
    selected: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    deduped: int = 0
    pruned: int = 0
    abandoned: int = 0
    errors: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in ERROR_CLASSES})

    @property
    def written(self) -> int:
        return self.inserted + self.updated

    def summary(self) -> str:
        errs = ", ".join(f"{k}={v}" for k, v in self.errors.items())
        return (
            f"gathered={self.gathered} candidates={self.candidates} selected={self.selected} "
            f"inserted={self.inserted} updated={self.updated} failed={self.failed} "
            f"deduped={self.deduped} pruned={self.pruned} abandoned={self.abandoned} errors[{errs}]"
        )


@dataclass
class ItemOutcome:
    status: str  # inserted | updated | failed | abandoned
    provider_failures: int = 0
    page_failed: bool = False


class Pipeline:
    """
    One aggregation run: gather feeds, rank, take the top items, enrich and
    write them keyed by canonical URL, then dedupe and prune the store.

    fetch → parse → canonicalize → rank → take top → classify/enrich/summarize → upsert → dedupe → prune

    An invalid config raises ConfigError and an unreachable store raises
    StoreUnavailableError, both before any feed is fetched; every other failure
    is per feed or per item and only counted.
    """

    def __init__(
        self,
        config: PipelineConfig,
        table: ArticleTable,
        *,
        session: Optional[requests.Session] = None,
        providers: Optional[Sequence[TextProvider]] = None,
        now: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.session = session or build_session(config.user_agent)
        self.store = StoreGateway(table)
        if providers is None:
            providers = build_providers(config.providers, timeout_sec=config.provider_timeout_sec)
        self.limiter = RateLimiter()
        self.classifier = Classifier(providers, self.limiter)
        self.summarizer = Summarizer(providers, self.limiter)
        self.enricher = Enricher(session=self.session, pexels_api_key=config.pexels_api_key,
                                 timeout=config.http_timeout_sec, user_agent=config.user_agent)
        self.canonicalizer = Canonicalizer(session=self.session,
                                           aggregator_domains=config.aggregator_domains,
                                           timeout=config.http_timeout_sec)
        self.terms = TermSets.build(config.ai_terms, config.domain_terms,
                                    config.rigor_terms, config.promo_terms)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    def gather(self, stats: RunStats) -> List[CandidateItem]:
        cfg = self.config
        now = self._now()
        docs, failed = fetch_many(cfg.feeds, session=self.session, timeout=cfg.http_timeout_sec,
                                  max_workers=cfg.max_workers)
        stats.errors["network"] += failed

        items: List[CandidateItem] = []
        for feed_url, document in docs:
            entries, dropped = parse_document(document, feed_url=feed_url, now=now,
                                              max_items=cfg.max_items_per_feed,
                                              min_title_chars=cfg.min_title_chars)
            stats.errors["malformed"] += dropped
            for e in entries:
                if len(items) >= cfg.max_candidates:
                    break
                try:
                    items.append(to_candidate(e, self.canonicalizer))
                except ParseError as err:
                    stats.errors["malformed"] += 1
                    logger.debug("Dropping entry from %s: %s", feed_url, err)
            logger.info("Feed %s: %d entries", feed_url, len(entries))

        stats.gathered = len(items)
        stats.errors["network"] += self.canonicalizer.failures
        return items

    def _reusable(self, row: Optional[Mapping[str, Any]]) -> Optional[EnrichmentResult]:
        if not self.config.reuse_existing_enrichment or not row:
            return None
        content, image = row.get("content") or "", row.get("image_url") or ""
        if not content or not image:
            return None
        return EnrichmentResult(body_excerpt=content, image_url=image,
                                image_attribution=row.get("image_attribution") or "",
                                image_origin="stored", page_fetched=True)

    def process_item(self, item: CandidateItem, existing: Optional[Mapping[str, Any]] = None,
                     deadline: Optional[float] = None) -> ItemOutcome:
        if deadline is not None and time.monotonic() > deadline:
            logger.warning("Run deadline passed, abandoning %s", item.canonical_url)
            return ItemOutcome(status="abandoned")

        classification = self.classifier.classify(item.title, item.description)
        enrichment = self._reusable(existing)
        if enrichment is None:
            enrichment = self.enricher.enrich(item, classification.category)
        else:
            logger.debug("Reusing stored content and image for %s", item.canonical_url)

        result = self.summarizer.summarize(title=item.title, category=classification.category,
                                           source=item.reported_source, body=enrichment.body_excerpt)
        enriched = EnrichedItem.from_candidate(
            item,
            body_excerpt=enrichment.body_excerpt,
            image_url=enrichment.image_url,
            image_attribution=enrichment.image_attribution,
            category=classification.category,
            summary=result.summary,
            content=result.content,
        )
        status = self.store.upsert_by_canonical_url(PersistedArticle.from_enriched(enriched))
        logger.info("%s [%s] %s", status, classification.category, item.title)

        if self.config.item_delay_sec > 0:
            self._sleep(self.config.item_delay_sec)
        return ItemOutcome(status=status,
                           provider_failures=classification.provider_failures + result.provider_failures,
                           page_failed=not enrichment.page_fetched)

    def run(self) -> RunStats:
        cfg = self.config.validate()
        stats = RunStats()
        started = time.monotonic()
        deadline = started + cfg.run_timeout_sec if cfg.run_timeout_sec else None

        self.store.ping()

        gathered = self.gather(stats)
        ranked = rank(gathered, self.terms, freshness_days=cfg.freshness_days, now=self._now(),
                      is_aggregator=self.canonicalizer.is_aggregator)
        stats.candidates = len(ranked)
        selected = ranked[: cfg.take_top]
        stats.selected = len(selected)
        logger.info("Selected %d of %d candidates", len(selected), len(ranked))

        existing = self.store.existing(c.canonical_url for c in selected)
        statuses: Counter = Counter()
        with _fut.ThreadPoolExecutor(max_workers=max(1, cfg.max_workers)) as ex:
            futures = [ex.submit(self.process_item, c, existing.get(c.canonical_url), deadline)
                       for c in selected]
            for fu, item in zip(futures, selected):
                try:
                    outcome = fu.result()
                except Exception:  # noqa: BLE001 - one bad item must not sink the run
                    logger.exception("Item failed: %s", item.canonical_url)
                    statuses["failed"] += 1
                    continue
                statuses[outcome.status] += 1
                stats.errors["provider"] += outcome.provider_failures
                if outcome.page_failed:
                    stats.errors["network"] += 1

        stats.inserted = statuses["inserted"]
        stats.updated = statuses["updated"]
        stats.failed = statuses["failed"]
        stats.abandoned = statuses["abandoned"]

        stats.deduped = self.store.dedupe_by_canonical_url(cfg.dedupe_window)
        stats.pruned = self.store.prune_to_newest(cfg.retain)
        stats.errors["store"] += self.store.errors
        stats.errors["schema"] += self.store.probe.fallbacks

        logger.info("Run finished in %.1fs: %s", time.monotonic() - started, stats.summary())
        return stats
