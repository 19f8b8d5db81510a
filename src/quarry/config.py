"""Quarry configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (QUARRY_EMBEDDING_PROVIDER, QUARRY_EMBEDDING_MODEL,
     QUARRY_LOG_LEVEL)
  3. Per-project quarry.yaml
  4. Global ~/.quarry/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".quarry"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "quarry.yaml"

# Matches api_key, apikey, api_secret, *_token, token, *_secret, secret,
# password, passwd and credential(s). Does NOT match max_tokens or
# system_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "embedding",
        "chunkers",
        "ingest",
        "indexer",
        "budget",
        "compaction",
        "memory",
        "vector_store",
        "logging",
    ]
)

_VECTOR_BACKENDS: frozenset[str] = frozenset(["memory", "sqlite"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (quarry.yaml: embedding:).

    Attributes:
        provider: ``litellm`` for a hosted model, ``hashing`` for the
            deterministic offline provider.
        model: LiteLLM model string in provider/model format.
        dimensions: Vector length produced by the provider.
        batch_size: Number of texts sent per embedding call.
    """

    provider: str = "litellm"
    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 32


@dataclass
class TokenWindowCfg:
    max_tokens: int = 800
    overlap: int = 120


@dataclass
class CodeChunkerCfg:
    max_lines: int = 200
    min_lines: int = 5
    overlap_lines: int = 20


@dataclass
class ChunkersCfg:
    """Per-strategy chunker configuration (quarry.yaml: chunkers:)."""

    token_window: TokenWindowCfg = field(default_factory=TokenWindowCfg)
    markdown: TokenWindowCfg = field(default_factory=TokenWindowCfg)
    code: CodeChunkerCfg = field(default_factory=CodeChunkerCfg)


@dataclass
class IngestCfg:
    """Document ingestion (quarry.yaml: ingest:).

    ``strategy`` is ``token_window``, ``markdown`` or ``auto``.
    """

    strategy: str = "token_window"


@dataclass
class IndexerCfg:
    """Workspace indexer (quarry.yaml: indexer:)."""

    ignore_patterns: list[str] = field(default_factory=list)
    max_file_size: int = 1024 * 1024


@dataclass
class BudgetCfg:
    system_tokens: int = 200
    persona_tokens: int = 300
    memory_tokens: int = 0


@dataclass
class CompactionCfg:
    enabled: bool = True
    threshold: float = 0.8
    preserve_recent_messages: int = 8


@dataclass
class MemoryCfg:
    """Memory recall settings. ``file_dir`` of None disables the markdown mirror."""

    file_dir: str | None = None
    min_score: float = 0.3
    recency_window_days: int = 30
    auto_capture: bool = True


@dataclass
class VectorStoreCfg:
    backend: str = "sqlite"


@dataclass
class LoggingCfg:
    level: str = "warning"
    format: str = "console"


@dataclass
class QuarryConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunkers: ChunkersCfg = field(default_factory=ChunkersCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    indexer: IndexerCfg = field(default_factory=IndexerCfg)
    budget: BudgetCfg = field(default_factory=BudgetCfg)
    compaction: CompactionCfg = field(default_factory=CompactionCfg)
    memory: MemoryCfg = field(default_factory=MemoryCfg)
    vector_store: VectorStoreCfg = field(default_factory=VectorStoreCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: QuarryConfig) -> None:
    if cfg.embedding.dimensions < 1:
        raise ConfigError(
            f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}"
        )
    if cfg.embedding.batch_size < 1:
        raise ConfigError(
            f"embedding.batch_size must be >= 1, got {cfg.embedding.batch_size}"
        )
    if not 0.0 < cfg.compaction.threshold <= 1.0:
        raise ConfigError(
            f"compaction.threshold must be in (0, 1], got {cfg.compaction.threshold}"
        )
    if cfg.memory.recency_window_days < 1:
        raise ConfigError(
            f"memory.recency_window_days must be >= 1, got {cfg.memory.recency_window_days}"
        )
    if cfg.vector_store.backend not in _VECTOR_BACKENDS:
        raise ConfigError(
            f"vector_store.backend must be one of {sorted(_VECTOR_BACKENDS)}, "
            f"got '{cfg.vector_store.backend}'"
        )
    if cfg.ingest.strategy not in ("token_window", "markdown", "auto"):
        raise ConfigError(
            "ingest.strategy must be 'token_window', 'markdown' or 'auto', "
            f"got '{cfg.ingest.strategy}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_window(raw: dict[str, Any], defaults: TokenWindowCfg) -> TokenWindowCfg:
    return TokenWindowCfg(
        max_tokens=int(raw.get("max_tokens", defaults.max_tokens)),
        overlap=int(raw.get("overlap", defaults.overlap)),
    )


def _cfg_from_dict(data: dict[str, Any]) -> QuarryConfig:
    """Build a *QuarryConfig* from a merged raw YAML dict."""
    cfg = QuarryConfig()

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            provider=str(e.get("provider", cfg.embedding.provider)),
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
        )

    if "chunkers" in data:
        ch = data["chunkers"]
        code = ch.get("code", {})
        cfg.chunkers = ChunkersCfg(
            token_window=_parse_window(ch.get("token_window", {}), cfg.chunkers.token_window),
            markdown=_parse_window(ch.get("markdown", {}), cfg.chunkers.markdown),
            code=CodeChunkerCfg(
                max_lines=int(code.get("max_lines", cfg.chunkers.code.max_lines)),
                min_lines=int(code.get("min_lines", cfg.chunkers.code.min_lines)),
                overlap_lines=int(code.get("overlap_lines", cfg.chunkers.code.overlap_lines)),
            ),
        )

    if "ingest" in data:
        cfg.ingest = IngestCfg(
            strategy=str(data["ingest"].get("strategy", cfg.ingest.strategy)),
        )

    if "indexer" in data:
        ix = data["indexer"]
        cfg.indexer = IndexerCfg(
            ignore_patterns=[str(p) for p in ix.get("ignore_patterns", [])],
            max_file_size=int(ix.get("max_file_size", cfg.indexer.max_file_size)),
        )

    if "budget" in data:
        b = data["budget"]
        cfg.budget = BudgetCfg(
            system_tokens=int(b.get("system_tokens", cfg.budget.system_tokens)),
            persona_tokens=int(b.get("persona_tokens", cfg.budget.persona_tokens)),
            memory_tokens=int(b.get("memory_tokens", cfg.budget.memory_tokens)),
        )

    if "compaction" in data:
        c = data["compaction"]
        cfg.compaction = CompactionCfg(
            enabled=bool(c.get("enabled", cfg.compaction.enabled)),
            threshold=float(c.get("threshold", cfg.compaction.threshold)),
            preserve_recent_messages=int(
                c.get("preserve_recent_messages", cfg.compaction.preserve_recent_messages)
            ),
        )

    if "memory" in data:
        m = data["memory"]
        cfg.memory = MemoryCfg(
            file_dir=m.get("file_dir") or None,
            min_score=float(m.get("min_score", cfg.memory.min_score)),
            recency_window_days=int(m.get("recency_window_days", cfg.memory.recency_window_days)),
            auto_capture=bool(m.get("auto_capture", cfg.memory.auto_capture)),
        )

    if "vector_store" in data:
        cfg.vector_store = VectorStoreCfg(
            backend=str(data["vector_store"].get("backend", cfg.vector_store.backend)),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)),
            format=str(lg.get("format", cfg.logging.format)),
        )

    return cfg


def _apply_env_overrides(cfg: QuarryConfig) -> QuarryConfig:
    """Apply QUARRY_* environment variable overrides (layer 2)."""
    if provider := os.environ.get("QUARRY_EMBEDDING_PROVIDER"):
        cfg.embedding.provider = provider
    if model := os.environ.get("QUARRY_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if level := os.environ.get("QUARRY_LOG_LEVEL"):
        cfg.logging.level = level
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> QuarryConfig:
    """Load and return a merged *QuarryConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *quarry.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *QuarryConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg
