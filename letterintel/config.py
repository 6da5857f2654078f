"""Load and validate configuration from YAML with env var substitution."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from letterintel.errors import ConfigurationError

DEFAULT_QUALITY_WEIGHTS = {
    "citation": 0.30,
    "subscriber": 0.25,
    "recommendation": 0.15,
    "topic_relevance": 0.20,
    "platform": 0.05,
    "freshness": 0.05,
}


def _load_dotenv(path: str | Path = ".env") -> None:
    """Load a .env file into os.environ (without overwriting existing vars)."""
    env_path = Path(path)
    if not env_path.is_file():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key and key not in os.environ:
                os.environ[key] = value


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} patterns in config values."""
    if isinstance(value, str):
        pattern = re.compile(r"\$\{([^}]+)\}")
        match = pattern.search(value)
        if match:
            if match.group(0) == value:
                return os.environ.get(match.group(1), "")
            return pattern.sub(lambda m: os.environ.get(m.group(1), ""), value)
        return value
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def load_config(path: str | Path = "config.yaml") -> dict[str, Any]:
    """Load config from YAML file and resolve environment variables."""
    _load_dotenv()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return _resolve_env_vars(raw)


def get_active_sources(config: dict) -> list[str]:
    """Return list of enabled source names."""
    sources = config.get("sources", {})
    return [name for name, cfg in sources.items() if cfg.get("enabled", False)]


def get_llm_task_config(config: dict, task: str) -> dict:
    """Get provider settings for a given LLM task.

    Raises ConfigurationError when the task points at an undefined provider
    or the provider needs a key that is not set.
    """
    llm_cfg = config.get("llm", {})
    task_cfg = llm_cfg.get("tasks", {}).get(task, {})
    provider_name = task_cfg.get("provider")
    if not provider_name:
        raise ConfigurationError(
            f"No provider configured for LLM task '{task}' (set llm.tasks.{task}.provider)"
        )

    providers = llm_cfg.get("providers", {})
    if provider_name not in providers:
        raise ConfigurationError(
            f"LLM task '{task}' uses provider '{provider_name}', "
            f"which is not defined under llm.providers"
        )
    provider_cfg = providers[provider_name]
    provider_type = provider_cfg.get("type", "openai_compatible")

    api_key = provider_cfg.get("api_key", "")
    if provider_type == "anthropic" and not api_key:
        raise ConfigurationError(
            f"Provider '{provider_name}' has no api_key "
            f"(set llm.providers.{provider_name}.api_key or ANTHROPIC_API_KEY)"
        )

    return {
        "provider_name": provider_name,
        "provider_type": provider_type,
        "api_key": api_key,
        "base_url": provider_cfg.get("base_url", ""),
        "model": task_cfg.get("model") or provider_cfg.get("default_model", ""),
        "max_retries": provider_cfg.get("max_retries", 3),
        "timeout": provider_cfg.get("timeout", 120),
    }


def get_embedding_config(config: dict) -> dict:
    """Embedding provider settings with defaults."""
    cfg = config.get("embeddings", {})
    provider = cfg.get("provider", "model2vec")
    if provider == "openai_compatible" and not cfg.get("base_url"):
        raise ConfigurationError(
            "embeddings.base_url is required for the openai_compatible embedding provider"
        )
    return {
        "provider": provider,
        "model": cfg.get("model", "minishlab/potion-base-8M"),
        "batch_size": cfg.get("batch_size", 32),
        "api_key": cfg.get("api_key", ""),
        "base_url": cfg.get("base_url", ""),
        "timeout": cfg.get("timeout", 60),
        "max_retries": cfg.get("max_retries", 3),
    }


def get_chunking_config(config: dict) -> dict:
    cfg = config.get("process", {}).get("chunking", {})
    return {
        "target_size": cfg.get("target_size", 800),
        "min_size": cfg.get("min_size", 200),
        "overlap": cfg.get("overlap", 100),
    }


def get_junk_min_length(config: dict) -> int:
    return config.get("process", {}).get("junk", {}).get("min_length", 300)


def get_retrieval_config(config: dict) -> dict:
    """Hybrid retrieval tunables."""
    cfg = config.get("retrieval", {})
    weights = cfg.get("weights", {})
    return {
        "top_k": cfg.get("top_k", 10),
        "vector_weight": float(weights.get("vector", 0.7)),
        "keyword_weight": float(weights.get("keyword", 0.3)),
        "min_combined_score": float(cfg.get("min_combined_score", 0.0)),
    }


def get_search_config(config: dict) -> dict:
    cfg = config.get("search", {})
    return {
        "max_citations": cfg.get("max_citations", 5),
        "temperature": cfg.get("temperature", 0.1),
        "max_tokens": cfg.get("max_tokens", 2000),
    }


def get_quality_weights(config: dict) -> dict[str, float]:
    """Quality signal weights, falling back to defaults per signal."""
    weights = dict(DEFAULT_QUALITY_WEIGHTS)
    overrides = config.get("quality", {}).get("weights", {}) or {}
    unknown = set(overrides) - set(DEFAULT_QUALITY_WEIGHTS)
    if unknown:
        raise ConfigurationError(
            f"Unknown quality.weights keys: {', '.join(sorted(unknown))}"
        )
    weights.update({k: float(v) for k, v in overrides.items()})
    return weights


def get_briefing_config(config: dict) -> dict:
    cfg = config.get("briefing", {})
    return {
        "fallback_hours": cfg.get("fallback_hours", 24),
        "max_messages": cfg.get("max_messages", 200),
        "classify_timeout_seconds": cfg.get("classify_timeout_seconds", 40),
        "max_serendipity": cfg.get("max_serendipity", 2),
        "max_radar_signals": cfg.get("max_radar_signals", 5),
        "distance_threshold": config.get("process", {}).get("cluster", {}).get(
            "distance_threshold", 0.6
        ),
    }


def get_rate_limit_delay(config: dict) -> float:
    """Fixed delay between sequential external calls."""
    return float(config.get("rate_limit", {}).get("delay_seconds", 2.0))


def get_storage_config(config: dict) -> dict:
    cfg = config.get("storage", {})
    return {
        "batch_size": cfg.get("batch_size", 500),
        "min_split_rows": cfg.get("min_split_rows", 25),
        "max_payload_bytes": cfg.get("max_payload_bytes", 4_000_000),
        "max_retries": cfg.get("max_retries", 3),
    }


def get_db_path(config: dict) -> str:
    """Get database path from config."""
    return config.get("database", {}).get("path", "data/letterintel.db")
