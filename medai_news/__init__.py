"""
medai_news

Scheduled aggregation of AI-in-medicine news into a small, always-fresh article store.

Core ideas:
- Input: RSS/Atom feed URLs (Google News searches plus publisher feeds)
- Process: fetch → parse → canonicalize → rank → take top → classify/enrich/summarize → upsert → dedupe → prune
- Output: the newest N articles in the store, one row per canonical URL

Example
-------
from medai_news import Pipeline, PipelineConfig, SupabaseTable

config = PipelineConfig.from_env().validate()
table = SupabaseTable.connect(config.supabase_url, config.supabase_key, config.table)

stats = Pipeline(config, table).run()
print(stats.inserted, stats.updated, stats.pruned)
"""
from .config import PipelineConfig
from .core import Pipeline, RunStats
from .models import CandidateItem, EnrichedItem, PersistedArticle
from .store import StoreGateway, SupabaseTable

__all__ = [
    "CandidateItem",
    "EnrichedItem",
    "PersistedArticle",
    "Pipeline",
    "PipelineConfig",
    "RunStats",
    "StoreGateway",
    "SupabaseTable",
]
