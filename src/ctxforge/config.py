"""Configuration management for ctxforge."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from ctxforge.exceptions import ConfigError

CTXFORGE_DIR = ".ctxforge"
CONFIG_FILE = "config.json"
WORKSPACE_DB_FILE = "workspace.db"


class RecencyBand(BaseModel):
    """Fragments last used within `max_age_days` earn `score`."""

    max_age_days: float
    score: float


class ScoringConfig(BaseModel):
    """Weights for the multi-factor relevance score."""

    similarity_weight: float = 0.5
    recency_bands: list[RecencyBand] = Field(
        default_factory=lambda: [
            RecencyBand(max_age_days=1, score=0.2),
            RecencyBand(max_age_days=7, score=0.1),
        ]
    )
    usage_divisor: float = 100.0
    usage_cap: float = 0.2
    priority_divisor: float = 50.0
    diversity_bonus: float = 0.1


class CompositionConfig(BaseModel):
    """Defaults for budgeted composition."""

    token_budget: int = 4000
    max_items: int = 10
    min_similarity: float = 0.65
    overflow_ratio: float = 1.10  # accept up to 10% over budget
    cutoff_ratio: float = 0.90  # stop once 90% of the budget is used
    candidate_multiplier: int = 2  # candidates considered per selectable item


class GraphConfig(BaseModel):
    """Defaults for the fragment similarity graph."""

    min_similarity: float = 0.70
    max_edges_per_node: int = 10
    max_nodes: int = 200
    max_depth: int = 5
    max_paths: int = 5
    neighbor_limit: int = 10


class PredictionConfig(BaseModel):
    """Defaults for the predictive usage engine."""

    limit: int = 8
    time_window_days: int = 30
    activity_window_days: int = 90
    sequence_window_days: int = 90
    frequency_window_days: int = 30
    strategy_timeout_s: float = 2.0


class EmbeddingConfig(BaseModel):
    """Local embedding provider configuration."""

    dimensions: int = 384


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    owner_id: str = "local"
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    composition: CompositionConfig = Field(default_factory=CompositionConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
    prediction: PredictionConfig = Field(default_factory=PredictionConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .ctxforge directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CTXFORGE_DIR).is_dir():
            return current
        current = current.parent
    if (current / CTXFORGE_DIR).is_dir():
        return current
    return None


def get_ctxforge_dir(root: Path) -> Path:
    """Get the .ctxforge directory for a project root."""
    return root / CTXFORGE_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .ctxforge/config.json."""
    config_path = get_ctxforge_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
            return ProjectConfig(**data)
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e
    return ProjectConfig(name=root.name)


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .ctxforge/config.json."""
    cf_dir = get_ctxforge_dir(root)
    cf_dir.mkdir(parents=True, exist_ok=True)
    config_path = cf_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'graph.max_depth')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    try:
        return ProjectConfig(**data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e
