"""
NavMeshBuilder — последовательный запуск стадий построения.

Растеризация -> фильтрация -> компактный heightfield и эрозия ->
поле расстояний и регионы -> контуры -> полигоны -> детальная сетка.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import List, Optional

from navgen import log
from navgen.compact import (
    CompactHeightfield,
    build_compact_heightfield,
    erode_walkable_area,
    mark_convex_poly_area,
)
from navgen.config import NavMeshConfig
from navgen.contours import ContourSet, build_contours
from navgen.detail_mesh import PolyMeshDetail, build_poly_mesh_detail
from navgen.errors import TopologyError
from navgen.filters import filter_heightfield
from navgen.heightfield import Heightfield, create_heightfield
from navgen.polymesh import PolyMesh, build_poly_mesh
from navgen.rasterizer import rasterize_triangles
from navgen.regions import RegionSet, build_distance_field, build_regions
from navgen.types import BuildStats, TriangleMesh


@dataclass
class NavMeshBuildResult:
    """Результат построения."""

    poly_mesh: PolyMesh
    detail_mesh: PolyMeshDetail
    contour_errors: List[TopologyError] = field(default_factory=list)
    stats: BuildStats = field(default_factory=BuildStats)

    # Промежуточные стадии (только при keep_intermediates=True)
    heightfield: Optional[Heightfield] = None
    compact_heightfield: Optional[CompactHeightfield] = None
    regions: Optional[RegionSet] = None
    contours: Optional[ContourSet] = None


class NavMeshBuilder:
    """
    Построитель навигационной сетки.

    Usage:
        builder = NavMeshBuilder(NavMeshConfig(cell_size=0.5))
        result = builder.build(mesh)
        print(result.poly_mesh.poly_count)
    """

    def __init__(self, config: Optional[NavMeshConfig] = None, keep_intermediates: bool = False) -> None:
        self.config = config if config is not None else NavMeshConfig()
        self.keep_intermediates = keep_intermediates

    @contextmanager
    def _stage(self, stats: BuildStats, name: str):
        start = time.perf_counter()
        yield
        elapsed = (time.perf_counter() - start) * 1000.0
        stats.timings_ms[name] = elapsed

    def build(self, mesh: TriangleMesh) -> NavMeshBuildResult:
        """
        Построить навигационную сетку по треугольному мешу.

        Raises:
            ConfigError: Некорректная конфигурация.
            GeometryError: Пустая или некорректная геометрия.
        """
        config = self.config
        config.validate()
        mesh.validate()

        stats = BuildStats()
        counters = stats.counters
        keep = self.keep_intermediates

        log.info(
            f"[NavMeshBuilder] Building from {mesh.vertex_count} vertices, "
            f"{mesh.triangle_count} triangles"
        )

        with self._stage(stats, "rasterize"):
            hf = create_heightfield(mesh, config)
            counters["triangles_rasterized"] = rasterize_triangles(
                mesh, hf, config.walkable_slope_angle, config.walkable_climb
            )
        counters["spans"] = hf.span_count()
        log.info(
            f"[NavMeshBuilder] Rasterized into {hf.width}x{hf.depth} grid, "
            f"{counters['spans']} spans"
        )

        with self._stage(stats, "filter"):
            filter_heightfield(config, hf)
        counters["walkable_spans"] = hf.walkable_span_count()

        with self._stage(stats, "compact"):
            chf = build_compact_heightfield(config.walkable_height, config.walkable_climb, hf)
            counters["eroded_spans"] = erode_walkable_area(config.walkable_radius, chf)
            marked = 0
            for volume in config.area_volumes:
                marked += mark_convex_poly_area(volume, chf)
            counters["area_marked_spans"] = marked
        counters["compact_spans"] = chf.span_count
        if not keep:
            hf = None
        log.info(
            f"[NavMeshBuilder] Compact heightfield: {counters['compact_spans']} spans, "
            f"{counters['eroded_spans']} eroded"
        )

        with self._stage(stats, "regions"):
            build_distance_field(chf)
            regions = build_regions(chf, config.min_region_area, config.merge_region_area)
        counters["regions"] = len(regions)
        counters["max_distance"] = chf.max_distance
        log.info(f"[NavMeshBuilder] {len(regions)} regions, max distance {chf.max_distance}")

        with self._stage(stats, "contours"):
            cset = build_contours(
                chf,
                config.max_simplification_error,
                config.max_edge_len,
                config.contour_flags,
            )
        counters["contours"] = len(cset.contours)
        counters["contour_errors"] = len(cset.errors)
        if cset.errors:
            log.warn(f"[NavMeshBuilder] {len(cset.errors)} regions failed contour extraction")

        with self._stage(stats, "poly_mesh"):
            pmesh = build_poly_mesh(cset, config.max_verts_per_poly)
        counters["polygons"] = pmesh.poly_count
        counters["vertices"] = pmesh.vertex_count
        contour_errors = list(cset.errors)
        if not keep:
            cset = None

        with self._stage(stats, "detail_mesh"):
            dmesh = build_poly_mesh_detail(
                pmesh,
                chf,
                config.detail_sample_dist,
                config.detail_sample_max_error,
                max_workers=config.max_workers,
            )
        counters["detail_vertices"] = len(dmesh.verts)
        counters["detail_triangles"] = len(dmesh.tris)
        if not keep:
            chf = None
            regions = None

        total = sum(stats.timings_ms.values())
        log.info(
            f"[NavMeshBuilder] Built {pmesh.poly_count} polygons, "
            f"{len(dmesh.tris)} detail triangles in {total:.1f} ms"
        )

        return NavMeshBuildResult(
            poly_mesh=pmesh,
            detail_mesh=dmesh,
            contour_errors=contour_errors,
            stats=stats,
            heightfield=hf,
            compact_heightfield=chf,
            regions=regions,
            contours=cset,
        )


def build_navmesh(mesh: TriangleMesh, config: Optional[NavMeshConfig] = None) -> NavMeshBuildResult:
    """Построить навигационную сетку с конфигурацией config (или по умолчанию)."""
    return NavMeshBuilder(config).build(mesh)
