"""Configuration management for container search using Hydra.

All configuration is loaded from YAML files in conf/container_search/.
This module provides typed config objects and validation.
"""

from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

from container_search.embedding import EmbeddingConfig
from container_search.indexer import IndexingConfig
from container_search.scoring import SearchConfig
from container_search.storage import StorageConfig


class SerializationConfig(BaseModel):
    """Item serialization configuration.

    Attributes:
        max_depth: Maximum container nesting to descend into
        vanilla_tags: Whether the built-in tag providers are registered
    """

    max_depth: int = Field(default=10, ge=0, le=64)
    vanilla_tags: bool = True


class ContainerSearchConfig(BaseModel):
    """Top-level configuration for the container search system.

    Attributes:
        embedding: Embedding provider configuration
        storage: Vector storage configuration
        indexing: Debounce and worker pool configuration
        search: Result limits and re-ranking configuration
        serialization: Item serialization configuration
        log_level: Minimum level for the loguru sink
    """

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    serialization: SerializationConfig = Field(default_factory=SerializationConfig)
    log_level: str = Field(
        default="INFO", pattern="^(TRACE|DEBUG|INFO|SUCCESS|WARNING|ERROR|CRITICAL)$"
    )


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> ContainerSearchConfig:
    """Load container search configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/container_search/)
        overrides: List of config overrides (e.g., ["indexing.debounce_delay_ms=500"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config("default")
        >>> config.embedding.provider
        'local'

        >>> config = load_config("default", overrides=["search.keyword_boost_weight=0.3"])
        >>> config.search.keyword_boost_weight
        0.3
    """
    if config_path is None:
        repo_root = Path(__file__).parent.parent.parent
        config_path = repo_root / "conf" / "container_search"

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(
        config_dir=str(config_path), version_base=None, job_name="container_search"
    ):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    # Convert OmegaConf to dict and validate with Pydantic
    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return ContainerSearchConfig(**config_dict)  # type: ignore


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML

    Example:
        >>> import yaml
        >>> config = create_default_config()
        >>> with open("conf/container_search/default.yaml", "w") as f:
        ...     yaml.dump(config, f)
    """
    return {
        "embedding": {
            "provider": "local",
            "model": "nomic-embed-text-v1.5",
            "dimensions": None,
            "batch_size": 100,
            "max_retries": 3,
            "timeout_seconds": 30.0,
            "api_key": None,
            "cache_size": 10000,
        },
        "storage": {
            "provider": "local",
            "path": "data/container_index",
            "index_name": "container-search",
            "namespace": None,
            "api_key": None,
        },
        "indexing": {
            "debounce_delay_ms": 2000,
            "worker_threads": 2,
            "shutdown_grace_seconds": 10.0,
        },
        "search": {
            "default_limit": 10,
            "max_limit": 50,
            "candidate_multiplier": 3,
            "keyword_boost_weight": 0.0,
            "min_score": 0.0,
        },
        "serialization": {
            "max_depth": 10,
            "vanilla_tags": True,
        },
    }
