"""
Configuration for the dedup engine.

Thresholds for SimHash clustering, similarity scoring, the three-tier merge
policy and the ingest safety valve. Persisted as YAML and overridable from
the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

DEFAULT_CONFIG_FILE = ".casededup.yml"


@dataclass
class SimilarityWeights:
    """Field weights for the similarity score; must sum to 1."""

    title: float = 0.5
    steps: float = 0.4
    module: float = 0.1

    def __post_init__(self):
        for name in ("title", "steps", "module"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"weight '{name}' must be between 0 and 1, got {value}")
        total = self.title + self.steps + self.module
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"similarity weights must sum to 1.0, got {total:.4f}")

    def to_dict(self) -> Dict[str, float]:
        return {"title": self.title, "steps": self.steps, "module": self.module}

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "SimilarityWeights":
        return cls(
            title=data.get("title", 0.5),
            steps=data.get("steps", 0.4),
            module=data.get("module", 0.1),
        )


@dataclass
class ActionThresholds:
    """Score cut-offs for auto_merge / review_merge / keep_separate."""

    auto_merge: float = 0.97
    review_merge: float = 0.88

    def __post_init__(self):
        if not (0.0 <= self.review_merge <= self.auto_merge <= 1.0):
            raise ValueError(
                "thresholds must satisfy 0 <= review_merge <= auto_merge <= 1, "
                f"got review_merge={self.review_merge}, auto_merge={self.auto_merge}"
            )

    def to_dict(self) -> Dict[str, float]:
        return {"auto_merge": self.auto_merge, "review_merge": self.review_merge}

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "ActionThresholds":
        return cls(
            auto_merge=data.get("auto_merge", 0.97),
            review_merge=data.get("review_merge", 0.88),
        )


@dataclass
class SafetyValveConfig:
    """
    Fail-open guard for ingest.

    When more than ``max_skip_rate`` of a batch larger than
    ``min_batch_size`` collides with stored fingerprints, the detector is
    assumed to be misfiring and the whole batch is imported as new.
    """

    enabled: bool = True
    max_skip_rate: float = 0.8
    min_batch_size: int = 10

    def __post_init__(self):
        if not (0.0 < self.max_skip_rate <= 1.0):
            raise ValueError(f"max_skip_rate must be in (0, 1], got {self.max_skip_rate}")
        if self.min_batch_size < 0:
            raise ValueError(f"min_batch_size must be non-negative, got {self.min_batch_size}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "max_skip_rate": self.max_skip_rate,
            "min_batch_size": self.min_batch_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafetyValveConfig":
        return cls(
            enabled=data.get("enabled", True),
            max_skip_rate=data.get("max_skip_rate", 0.8),
            min_batch_size=data.get("min_batch_size", 10),
        )


@dataclass
class DedupConfig:
    """Top-level engine configuration."""

    # SimHash width and clustering distance
    simhash_bits: int = 64
    hamming_threshold: int = 4

    # Similarity gates
    find_similar_min: float = 0.7
    ingest_min_similarity: float = 0.75

    # Largest priority rank gap an automatic merge may bridge
    max_priority_rank_gap: int = 1

    weights: SimilarityWeights = field(default_factory=SimilarityWeights)
    actions: ActionThresholds = field(default_factory=ActionThresholds)
    safety_valve: SafetyValveConfig = field(default_factory=SafetyValveConfig)

    def __post_init__(self):
        """Validate configuration parameters."""
        if not (8 <= self.simhash_bits <= 64) or self.simhash_bits % 8 != 0:
            raise ValueError(f"simhash_bits must be a multiple of 8 between 8 and 64, got {self.simhash_bits}")

        if not (0 <= self.hamming_threshold <= self.simhash_bits):
            raise ValueError(
                f"hamming_threshold must be between 0 and simhash_bits, got {self.hamming_threshold}"
            )

        for name in ("find_similar_min", "ingest_min_similarity"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be between 0 and 1, got {value}")

        if self.max_priority_rank_gap < 0:
            raise ValueError(f"max_priority_rank_gap must be non-negative, got {self.max_priority_rank_gap}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "simhash_bits": self.simhash_bits,
            "hamming_threshold": self.hamming_threshold,
            "find_similar_min": self.find_similar_min,
            "ingest_min_similarity": self.ingest_min_similarity,
            "max_priority_rank_gap": self.max_priority_rank_gap,
            "weights": self.weights.to_dict(),
            "actions": self.actions.to_dict(),
            "safety_valve": self.safety_valve.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DedupConfig":
        """Create from dictionary representation."""
        return cls(
            simhash_bits=data.get("simhash_bits", 64),
            hamming_threshold=data.get("hamming_threshold", 4),
            find_similar_min=data.get("find_similar_min", 0.7),
            ingest_min_similarity=data.get("ingest_min_similarity", 0.75),
            max_priority_rank_gap=data.get("max_priority_rank_gap", 1),
            weights=SimilarityWeights.from_dict(data.get("weights") or {}),
            actions=ActionThresholds.from_dict(data.get("actions") or {}),
            safety_valve=SafetyValveConfig.from_dict(data.get("safety_valve") or {}),
        )

    def save_to_file(self, file_path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load_from_file(cls, file_path: Union[str, Path]) -> "DedupConfig":
        """Load configuration from YAML file."""
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(file_path, "r") as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Look in the current directory first, then the home directory."""
        current_dir_config = Path(DEFAULT_CONFIG_FILE)
        if current_dir_config.exists():
            return current_dir_config
        return Path.home() / DEFAULT_CONFIG_FILE

    @classmethod
    def load_or_default(cls, config_path: Optional[Union[str, Path]] = None) -> "DedupConfig":
        """
        Load configuration from file or return default if not found.

        Args:
            config_path: Optional path to configuration file

        Returns:
            DedupConfig instance
        """
        if config_path:
            config_path = Path(config_path)
            if config_path.exists():
                return cls.load_from_file(config_path)
        else:
            default_path = cls.get_default_config_path()
            if default_path.exists():
                return cls.load_from_file(default_path)

        return cls()


class ConfigManager:
    """
    Loads, saves and validates ``DedupConfig`` with environment overrides.
    """

    ENV_CONFIG_PATH = "CASEDEDUP_CONFIG"

    ENV_MAPPINGS = {
        "CASEDEDUP_SIMHASH_BITS": ("simhash_bits", int),
        "CASEDEDUP_HAMMING_THRESHOLD": ("hamming_threshold", int),
        "CASEDEDUP_FIND_SIMILAR_MIN": ("find_similar_min", float),
        "CASEDEDUP_INGEST_MIN_SIMILARITY": ("ingest_min_similarity", float),
        "CASEDEDUP_MAX_PRIORITY_GAP": ("max_priority_rank_gap", int),
        "CASEDEDUP_AUTO_MERGE": ("actions.auto_merge", float),
        "CASEDEDUP_REVIEW_MERGE": ("actions.review_merge", float),
        "CASEDEDUP_SAFETY_VALVE": ("safety_valve.enabled", lambda v: v.strip().lower() in ("1", "true", "yes", "on")),
        "CASEDEDUP_MAX_SKIP_RATE": ("safety_valve.max_skip_rate", float),
        "CASEDEDUP_MIN_BATCH_SIZE": ("safety_valve.min_batch_size", int),
    }

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[DedupConfig] = None

    @property
    def config(self) -> DedupConfig:
        """Get the current configuration, loading if necessary."""
        if self._config is None:
            self._config = self.apply_environment_overrides(self.load_config())
        return self._config

    def load_config(self) -> DedupConfig:
        """Load configuration from file or environment."""
        env_config_path = os.getenv(self.ENV_CONFIG_PATH)
        if env_config_path:
            config_path = Path(env_config_path)
            if config_path.exists():
                return DedupConfig.load_from_file(config_path)

        if self.config_path:
            return DedupConfig.load_or_default(self.config_path)

        return DedupConfig.load_or_default()

    def save_config(self, config: DedupConfig, path: Optional[Union[str, Path]] = None) -> Path:
        """Save configuration to file and return the path written."""
        save_path = Path(path) if path else (self.config_path or DedupConfig.get_default_config_path())
        config.save_to_file(save_path)
        self._config = config
        return save_path

    def get_environment_overrides(self) -> Dict[str, Any]:
        """Get configuration overrides from environment variables."""
        overrides: Dict[str, Any] = {}

        for env_var, (config_key, config_type) in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                try:
                    overrides[config_key] = config_type(env_value)
                except ValueError as e:
                    raise ValueError(f"Invalid environment variable {env_var}={env_value}: {e}")

        return overrides

    def apply_environment_overrides(self, config: DedupConfig) -> DedupConfig:
        """Apply environment variable overrides to configuration."""
        overrides = self.get_environment_overrides()

        if not overrides:
            return config

        config_dict = config.to_dict()

        for key, value in overrides.items():
            if "." in key:
                parts = key.split(".")
                current = config_dict
                for part in parts[:-1]:
                    current = current.setdefault(part, {})
                current[parts[-1]] = value
            else:
                config_dict[key] = value

        return DedupConfig.from_dict(config_dict)

    def validate_config(self, config: DedupConfig) -> List[str]:
        """Validate configuration and return list of issues."""
        issues = []

        try:
            DedupConfig.from_dict(config.to_dict())
        except ValueError as e:
            issues.append(str(e))

        if config.ingest_min_similarity > config.actions.review_merge:
            issues.append(
                "Warning: ingest_min_similarity above review_merge means review "
                "candidates are never surfaced"
            )

        if config.hamming_threshold > config.simhash_bits // 4:
            issues.append(
                "Warning: hamming_threshold above a quarter of simhash_bits will "
                "cluster unrelated records"
            )

        return issues
