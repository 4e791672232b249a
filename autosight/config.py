"""Engine configuration.

The numbers here are game-balance constants rather than engine behavior:
cover banding thresholds, the darkness rank that defeats darkvision, and
the sampling density used for silhouette coverage. They are loaded from a
JSON file (or a dict from the host's settings store) and passed explicitly
to every component that needs them.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path

TOKEN_COVER_MODES = ("coverage", "size")


@dataclass
class EngineConfig:
    grid_distance: float = 5.0

    wall_standard_threshold: float = 50.0
    wall_greater_threshold: float = 70.0
    wall_allow_greater: bool = True
    token_cover_mode: str = "coverage"
    allow_prone_blockers: bool = False
    ignore_dead_blockers: bool = True

    darkness_blocking_rank: int = 4
    magical_darkness_rank: int = 1
    lifesense_detects_undead: bool = False

    silhouette_samples: int = 7
    silhouette_levels: int = 3

    sense_cache_ttl: float = 1.0
    debounce_seconds: float = 0.05
    batch_chunk_size: int = 64

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        std = self.wall_standard_threshold
        grt = self.wall_greater_threshold
        if not 0.0 <= std <= grt <= 100.0:
            raise ValueError(
                "cover thresholds must satisfy 0 <= standard <= greater <= 100, "
                f"got standard={std}, greater={grt}"
            )
        if self.token_cover_mode not in TOKEN_COVER_MODES:
            raise ValueError(
                f"unknown token_cover_mode: {self.token_cover_mode!r}"
            )
        if self.darkness_blocking_rank < 0 or self.magical_darkness_rank < 0:
            raise ValueError("darkness ranks must be non-negative")
        if self.grid_distance <= 0:
            raise ValueError("grid_distance must be positive")
        if self.silhouette_samples < 1 or self.silhouette_levels < 1:
            raise ValueError("silhouette sampling needs at least one sample")
        if self.batch_chunk_size < 1:
            raise ValueError("batch_chunk_size must be at least 1")

    @staticmethod
    def from_dict(d: dict | None) -> EngineConfig:
        """Build a config from a dict, ignoring keys it does not know."""
        if not d:
            return EngineConfig()
        known = {f.name for f in fields(EngineConfig)}
        return EngineConfig(**{k: v for k, v in d.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: Path | str) -> EngineConfig:
    """Load an ``EngineConfig`` from a JSON file.

    Missing keys take their defaults; invalid values raise ``ValueError``.
    """
    with open(path) as f:
        data = json.load(f)
    return EngineConfig.from_dict(data)
