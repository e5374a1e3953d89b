from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote_plus

from .exceptions import ConfigError


def google_news_feed(query: str) -> str:
    """Google News RSS search URL restricted to the past day."""
    q = quote_plus(f"{query} when:1d")
    return f"https://news.google.com/rss/search?q={q}&hl=en-US&gl=US&ceid=US:en"


DEFAULT_FEEDS: List[str] = [
    google_news_feed("(medical AI) OR (health AI)"),
    google_news_feed("(clinical AI) OR (biomedical AI)"),
    google_news_feed("radiology AI OR imaging AI"),
    google_news_feed('FDA AI medical device OR "machine learning" device'),
    google_news_feed("oncology AI OR cancer AI"),
    "https://www.nature.com/subjects/medical-ai/rss",
    "https://www.nature.com/subjects/health-informatics/rss",
    "https://www.medrxiv.org/rss.xml",
    "https://www.fiercebiotech.com/rss/xml",
    "https://www.fiercepharma.com/rss/xml",
    "https://www.statnews.com/feed/",
]

AI_TERMS: List[str] = [
    "ai", "a.i.", "artificial intelligence", "machine learning", "deep learning",
    "neural network*", "llm*", "large language model*", "generative", "chatgpt",
    "algorithm*", "computer vision", "foundation model*",
]

DOMAIN_TERMS: List[str] = [
    "health*", "medic*", "clinic*", "patient*", "disease*", "diagnos*", "hospital*",
    "cancer*", "oncolog*", "radiolog*", "imaging", "drug*", "fda", "therap*",
    "genom*", "surg*", "cardio*", "biomedical",
]

RIGOR_TERMS: List[str] = [
    "study", "studies", "trial*", "peer-review*", "peer review*", "randomi*",
    "journal", "published in", "meta-analysis", "cohort",
]

PROMO_TERMS: List[str] = [
    "sponsored", "webinar", "opinion", "op-ed", "commentary", "press release",
    "podcast", "deal*", "discount*", "promo*", "advertis*", "buy now", "how to",
]

AGGREGATOR_DOMAINS: List[str] = ["news.google.com"]

USER_AGENT = "MedAINewsBot/1.0 (+https://medicalnews.ai; news aggregation crawler)"

# (env var, provider id, model, base_url, requests per minute)
PROVIDER_SPECS = [
    ("GEMINI_API_KEY", "gemini", "gemini-1.5-flash", None, 60),
    ("OPENAI_API_KEY", "openai", "gpt-4o-mini", None, 60),
    ("GROQ_API_KEY", "groq", "llama-3.3-70b-versatile", "https://api.groq.com/openai/v1", 30),
    ("TOGETHER_API_KEY", "together", "mistralai/Mixtral-8x7B-Instruct-v0.1", "https://api.together.xyz/v1", 60),
    ("OPENROUTER_API_KEY", "openrouter", "google/gemini-2.0-flash-exp:free", "https://openrouter.ai/api/v1", 20),
    ("XAI_API_KEY", "xai", "grok-beta", "https://api.x.ai/v1", 60),
]


@dataclass
class ProviderSettings:
    provider: str
    api_key: str
    model: str
    base_url: Optional[str] = None
    requests_per_minute: int = 60


@dataclass
class PipelineConfig:
    """Everything a run needs. Only `feeds` is mandatory."""
    feeds: Sequence[str] = field(default_factory=lambda: list(DEFAULT_FEEDS))
    ai_terms: Sequence[str] = field(default_factory=lambda: list(AI_TERMS))
    domain_terms: Sequence[str] = field(default_factory=lambda: list(DOMAIN_TERMS))
    rigor_terms: Sequence[str] = field(default_factory=lambda: list(RIGOR_TERMS))
    promo_terms: Sequence[str] = field(default_factory=lambda: list(PROMO_TERMS))
    aggregator_domains: Sequence[str] = field(default_factory=lambda: list(AGGREGATOR_DOMAINS))
    max_items_per_feed: int = 25
    max_candidates: int = 120
    min_title_chars: int = 20
    take_top: int = 10
    retain: int = 10
    freshness_days: float = 3.0
    dedupe_window: int = 400
    table: str = "medical_news"
    user_agent: str = USER_AGENT
    http_timeout_sec: float = 15.0
    provider_timeout_sec: float = 15.0
    max_workers: int = 4
    item_delay_sec: float = 1.0
    run_timeout_sec: Optional[float] = None
    reuse_existing_enrichment: bool = True
    providers: List[ProviderSettings] = field(default_factory=list)
    pexels_api_key: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    def validate(self) -> "PipelineConfig":
        if not [f for f in self.feeds if f and f.strip()]:
            raise ConfigError("No feed endpoints configured.")
        for name in ("max_items_per_feed", "max_candidates", "take_top", "retain", "max_workers"):
            if int(getattr(self, name)) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)!r}")
        if self.freshness_days < 0:
            raise ConfigError("freshness_days must not be negative")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        env = os.environ if environ is None else environ
        cfg = cls()

        feeds = _split_list(env.get("MEDAI_FEEDS"))
        if feeds:
            cfg.feeds = feeds
        domain_terms = _split_list(env.get("MEDAI_DOMAIN_TERMS"))
        if domain_terms:
            cfg.domain_terms = domain_terms

        ints: Dict[str, str] = {
            "MEDAI_TAKE_TOP": "take_top",
            "MEDAI_RETAIN": "retain",
            "MEDAI_MAX_CANDIDATES": "max_candidates",
            "MEDAI_MAX_PER_FEED": "max_items_per_feed",
            "MEDAI_MAX_WORKERS": "max_workers",
        }
        for key, attr in ints.items():
            if env.get(key):
                setattr(cfg, attr, _to_int(key, env[key]))
        if env.get("MEDAI_FRESHNESS_DAYS"):
            cfg.freshness_days = _to_float("MEDAI_FRESHNESS_DAYS", env["MEDAI_FRESHNESS_DAYS"])
        if env.get("MEDAI_RUN_TIMEOUT"):
            cfg.run_timeout_sec = _to_float("MEDAI_RUN_TIMEOUT", env["MEDAI_RUN_TIMEOUT"])
        if env.get("MEDAI_ITEM_DELAY"):
            cfg.item_delay_sec = _to_float("MEDAI_ITEM_DELAY", env["MEDAI_ITEM_DELAY"])
        if env.get("MEDAI_TABLE"):
            cfg.table = env["MEDAI_TABLE"].strip()

        cfg.providers = providers_from_env(env)
        cfg.pexels_api_key = (env.get("PEXELS_API_KEY") or "").strip() or None
        cfg.supabase_url = (env.get("SUPABASE_URL") or "").strip() or None
        cfg.supabase_key = (
            env.get("SUPABASE_SERVICE_ROLE_KEY") or env.get("SUPABASE_KEY") or ""
        ).strip() or None
        return cfg


def providers_from_env(env: Mapping[str, str]) -> List[ProviderSettings]:
    out: List[ProviderSettings] = []
    for env_key, provider, model, base_url, rpm in PROVIDER_SPECS:
        key = env.get(env_key) or ""
        if provider == "gemini" and not key:
            key = env.get("GOOGLE_API_KEY") or ""
        key = key.strip()
        # Placeholder values like "xxx" are treated as unset
        if len(key) <= 10:
            continue
        out.append(ProviderSettings(provider=provider, api_key=key, model=model,
                                    base_url=base_url, requests_per_minute=rpm))
    return out


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    parts = value.replace("\n", ",").split(",")
    return [p.strip() for p in parts if p.strip()]


def _to_int(key: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e


def _to_float(key: str, value: str) -> float:
    try:
        return float(value.strip())
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e
