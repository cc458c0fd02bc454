"""
Navigation build configuration.

NavMeshConfig holds the parameters consumed by the generation pipeline.
Most values are in voxel units (cells along XZ, cell heights along Y);
AgentSettings describes an agent in world units and converts to a config.
Configurations are saved as JSON.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, asdict
from enum import IntFlag
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from navgen import log
from navgen.errors import ConfigError
from navgen.types import ConvexVolume


class BuildContoursFlags(IntFlag):
    """Which contour edges are split by max_edge_len."""
    NONE = 0
    TESSELLATE_WALL_EDGES = 1    # Рёбра, граничащие с непроходимым
    TESSELLATE_AREA_EDGES = 2    # Рёбра между разными area id
    DEFAULT = 1


@dataclass
class NavMeshConfig:
    """
    Parameters of a single navmesh build.

    Units:
    - cell_size, cell_height, detail_sample_dist, detail_sample_max_error: world units
    - walkable_slope_angle: degrees
    - walkable_height, walkable_climb: cells along Y
    - walkable_radius, max_edge_len, max_simplification_error: cells along XZ
    - min_region_area, merge_region_area: span count
    """

    cell_size: float = 0.3
    cell_height: float = 0.2
    walkable_slope_angle: float = 45.0
    walkable_height: int = 10
    walkable_climb: int = 4
    walkable_radius: int = 2
    max_edge_len: int = 40
    max_simplification_error: float = 1.3
    min_region_area: int = 64
    merge_region_area: int = 400
    max_verts_per_poly: int = 6
    detail_sample_dist: float = 1.8
    detail_sample_max_error: float = 0.2

    filter_low_hanging_obstacles: bool = True
    filter_ledge_spans: bool = True
    filter_walkable_low_height_spans: bool = True
    strict_ledges: bool = False
    """Original ledge rule: any drop deeper than walkable_climb (grid edge included) is a ledge."""

    contour_flags: BuildContoursFlags = BuildContoursFlags.DEFAULT
    area_volumes: List[ConvexVolume] = field(default_factory=list)

    bmin: Optional[tuple[float, float, float]] = None
    """Explicit build bounds. None = bounds of the input mesh."""
    bmax: Optional[tuple[float, float, float]] = None

    max_workers: Optional[int] = None
    """Threads for detail sampling. None or 1 = sequential."""

    def validate(self) -> None:
        """
        Check parameter consistency.

        Raises:
            ConfigError: On the first inconsistent parameter.
        """
        if not self.cell_size > 0:
            raise ConfigError(f"cell_size must be positive, got {self.cell_size}")
        if not self.cell_height > 0:
            raise ConfigError(f"cell_height must be positive, got {self.cell_height}")
        if self.walkable_height <= 0:
            raise ConfigError(f"walkable_height must be positive, got {self.walkable_height}")
        if self.max_verts_per_poly < 3:
            raise ConfigError(f"max_verts_per_poly must be at least 3, got {self.max_verts_per_poly}")
        if not 0.0 <= self.walkable_slope_angle < 90.0:
            raise ConfigError(
                f"walkable_slope_angle must be in [0, 90) degrees, got {self.walkable_slope_angle}"
            )

        for name in (
            "walkable_climb",
            "walkable_radius",
            "max_edge_len",
            "min_region_area",
            "merge_region_area",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative, got {getattr(self, name)}")

        for name in ("max_simplification_error", "detail_sample_dist", "detail_sample_max_error"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative, got {getattr(self, name)}")

        if (self.bmin is None) != (self.bmax is None):
            raise ConfigError("bmin and bmax must be given together")
        if self.bmin is not None and np.any(np.asarray(self.bmax) <= np.asarray(self.bmin)):
            raise ConfigError(f"bmax {self.bmax} must be greater than bmin {self.bmin}")

        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.max_workers}")

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        data = asdict(self)
        data["contour_flags"] = int(self.contour_flags)
        data["area_volumes"] = [volume.to_dict() for volume in self.area_volumes]
        data["bmin"] = list(self.bmin) if self.bmin is not None else None
        data["bmax"] = list(self.bmax) if self.bmax is not None else None
        return data

    @staticmethod
    def from_dict(data: dict) -> "NavMeshConfig":
        """Deserialize from dictionary. Missing keys keep their defaults."""
        defaults = NavMeshConfig()
        known = {f for f in defaults.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown config options: {', '.join(sorted(unknown))}")

        values = dict(data)
        if "contour_flags" in values:
            values["contour_flags"] = BuildContoursFlags(int(values["contour_flags"]))
        if "area_volumes" in values:
            values["area_volumes"] = [ConvexVolume.from_dict(v) for v in values["area_volumes"]]
        for key in ("bmin", "bmax"):
            if values.get(key) is not None:
                values[key] = tuple(float(c) for c in values[key])
        return NavMeshConfig(**values)


@dataclass
class AgentSettings:
    """
    Agent and build description in world units.

    Defaults resemble an adult human in a metre-scaled world.
    """

    name: str = "Human"
    cell_size: float = 0.3
    cell_height: float = 0.2
    height: float = 2.0
    radius: float = 0.6
    max_climb: float = 0.9
    max_slope: float = 45.0
    region_min_size: float = 8.0
    """Side of the smallest kept region, in cells."""
    region_merge_size: float = 20.0
    """Side of the largest region that is still merged into neighbours, in cells."""
    edge_max_len: float = 12.0
    edge_max_error: float = 1.3
    verts_per_poly: int = 6
    detail_sample_dist: float = 6.0
    """In cells; values below 0.9 disable height sampling."""
    detail_sample_max_error: float = 1.0
    """In cell heights."""

    def to_config(self) -> NavMeshConfig:
        """Convert world-unit agent description to voxel-unit build config."""
        if self.cell_size <= 0 or self.cell_height <= 0:
            raise ConfigError("cell_size and cell_height must be positive")

        return NavMeshConfig(
            cell_size=self.cell_size,
            cell_height=self.cell_height,
            walkable_slope_angle=self.max_slope,
            walkable_height=int(math.ceil(self.height / self.cell_height)),
            walkable_climb=int(math.floor(self.max_climb / self.cell_height)),
            walkable_radius=int(math.ceil(self.radius / self.cell_size)),
            max_edge_len=int(self.edge_max_len / self.cell_size),
            max_simplification_error=self.edge_max_error,
            min_region_area=int(self.region_min_size * self.region_min_size),
            merge_region_area=int(self.region_merge_size * self.region_merge_size),
            max_verts_per_poly=int(self.verts_per_poly),
            detail_sample_dist=0.0 if self.detail_sample_dist < 0.9
            else self.cell_size * self.detail_sample_dist,
            detail_sample_max_error=self.cell_height * self.detail_sample_max_error,
        )

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return asdict(self)

    @staticmethod
    def from_dict(data: dict) -> "AgentSettings":
        """Deserialize from dictionary."""
        defaults = AgentSettings()
        return AgentSettings(**{
            key: data.get(key, getattr(defaults, key))
            for key in defaults.__dataclass_fields__
        })


def load_config(path: Union[str, Path]) -> NavMeshConfig:
    """
    Load a NavMeshConfig from JSON.

    The file holds either config options directly or an {"agent": {...}}
    section with AgentSettings.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if "agent" in data:
        config = AgentSettings.from_dict(data["agent"]).to_config()
        overrides = {k: v for k, v in data.items() if k != "agent"}
        if overrides:
            merged = config.to_dict()
            merged.update(overrides)
            config = NavMeshConfig.from_dict(merged)
    else:
        config = NavMeshConfig.from_dict(data)

    log.info(f"[NavMeshConfig] Loaded config from {path}")
    return config


def save_config(config: NavMeshConfig, path: Union[str, Path]) -> None:
    """Save a NavMeshConfig to JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
    log.info(f"[NavMeshConfig] Saved to {path}")
