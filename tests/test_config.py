from __future__ import annotations

import pytest

from medai_news.config import DEFAULT_FEEDS, PipelineConfig, providers_from_env
from medai_news.exceptions import ConfigError


def test_defaults() -> None:
    cfg = PipelineConfig().validate()

    assert cfg.feeds == DEFAULT_FEEDS
    assert (cfg.max_items_per_feed, cfg.max_candidates, cfg.take_top, cfg.retain) == (25, 120, 10, 10)
    assert cfg.table == "medical_news"
    assert cfg.providers == []


def test_from_env_overrides() -> None:
    cfg = PipelineConfig.from_env({
        "MEDAI_FEEDS": "https://a.example/rss,\nhttps://b.example/atom",
        "MEDAI_TAKE_TOP": "5",
        "MEDAI_RETAIN": "20",
        "MEDAI_FRESHNESS_DAYS": "1.5",
        "MEDAI_DOMAIN_TERMS": "cardio*, ecg",
        "MEDAI_TABLE": "cardiology_news",
        "MEDAI_RUN_TIMEOUT": "300",
        "PEXELS_API_KEY": "pexels-key",
        "SUPABASE_URL": "https://db.example",
        "SUPABASE_SERVICE_ROLE_KEY": "service-role",
    })

    assert cfg.feeds == ["https://a.example/rss", "https://b.example/atom"]
    assert (cfg.take_top, cfg.retain, cfg.freshness_days) == (5, 20, 1.5)
    assert cfg.domain_terms == ["cardio*", "ecg"]
    assert cfg.table == "cardiology_news"
    assert cfg.run_timeout_sec == 300.0
    assert (cfg.pexels_api_key, cfg.supabase_url, cfg.supabase_key) == (
        "pexels-key", "https://db.example", "service-role")


def test_invalid_integer_raises_config_error() -> None:
    with pytest.raises(ConfigError):
        PipelineConfig.from_env({"MEDAI_TAKE_TOP": "ten"})


@pytest.mark.parametrize("field, value", [("feeds", []), ("take_top", 0), ("retain", -1)])
def test_validate_rejects_unusable_config(field: str, value) -> None:
    cfg = PipelineConfig()
    setattr(cfg, field, value)

    with pytest.raises(ConfigError):
        cfg.validate()


def test_providers_need_real_looking_keys() -> None:
    providers = providers_from_env({
        "GOOGLE_API_KEY": "g" * 30,
        "GROQ_API_KEY": "short",
        "XAI_API_KEY": "x" * 30,
    })

    assert [p.provider for p in providers] == ["gemini", "xai"]
    assert providers[1].base_url == "https://api.x.ai/v1"
