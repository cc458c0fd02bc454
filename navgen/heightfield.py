"""
Heightfield — разреженное воксельное представление геометрии.

Сетка колонок width × depth лежит в плоскости XZ. Каждая колонка хранит
отсортированный по высоте список непересекающихся спанов [smin, smax]
в единицах cell_height относительно bmin.y.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Tuple

import numpy as np

from navgen.config import NavMeshConfig
from navgen.errors import ConfigError, GeometryError
from navgen.types import NULL_AREA, SPAN_MAX_HEIGHT, TriangleMesh


@dataclass
class Span:
    """Сплошной интервал вокселей в колонке."""

    smin: int
    smax: int
    area: int

    def copy(self) -> "Span":
        return Span(self.smin, self.smax, self.area)


@dataclass
class Heightfield:
    """
    Колоночный heightfield.

    Колонка (x, z) хранится в columns[x + z * width].
    """

    width: int
    depth: int
    bmin: np.ndarray
    bmax: np.ndarray
    cell_size: float
    cell_height: float
    columns: List[List[Span]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.bmin = np.asarray(self.bmin, dtype=np.float64)
        self.bmax = np.asarray(self.bmax, dtype=np.float64)
        if not self.columns:
            self.columns = [[] for _ in range(self.width * self.depth)]

    def column(self, x: int, z: int) -> List[Span]:
        return self.columns[x + z * self.width]

    def in_bounds(self, x: int, z: int) -> bool:
        return 0 <= x < self.width and 0 <= z < self.depth

    def add_span(
        self,
        x: int,
        z: int,
        smin: int,
        smax: int,
        area: int,
        merge_threshold: int,
    ) -> None:
        """
        Вставить спан в колонку, сливая его с пересекающимися.

        Если верхушки слитых спанов отличаются не более чем на merge_threshold,
        итоговый area — больший из двух, иначе берётся area верхнего спана.

        Args:
            x, z: Координаты колонки.
            smin, smax: Нижняя и верхняя граница (smin <= smax).
            area: Area id нового спана.
            merge_threshold: Обычно walkable_climb.
        """
        if smin > smax:
            raise GeometryError(f"span smin {smin} > smax {smax} at column ({x}, {z})")

        spans = self.columns[x + z * self.width]
        new = Span(smin, smax, area)

        i = 0
        while i < len(spans):
            cur = spans[i]
            if cur.smin > new.smax:
                break
            if cur.smax < new.smin:
                i += 1
                continue

            # Пересечение: расширяем новый спан и удаляем текущий
            if cur.smin < new.smin:
                new.smin = cur.smin
            if cur.smax > new.smax:
                new.smax = cur.smax

            if abs(new.smax - cur.smax) <= merge_threshold:
                new.area = max(new.area, cur.area)

            del spans[i]

        spans.insert(i, new)

    def spans(self) -> Iterator[Tuple[int, int, Span]]:
        """Все спаны: (x, z, span) в порядке растра."""
        for z in range(self.depth):
            for x in range(self.width):
                for span in self.columns[x + z * self.width]:
                    yield x, z, span

    def span_count(self) -> int:
        return sum(len(c) for c in self.columns)

    def walkable_span_count(self) -> int:
        return sum(1 for c in self.columns for s in c if s.area != NULL_AREA)


def calc_grid_size(bmin, bmax, cell_size: float) -> Tuple[int, int]:
    """Размер сетки (width, depth) по AABB."""
    bmin = np.asarray(bmin, dtype=np.float64)
    bmax = np.asarray(bmax, dtype=np.float64)
    width = int((bmax[0] - bmin[0]) / cell_size + 0.5)
    depth = int((bmax[2] - bmin[2]) / cell_size + 0.5)
    return width, depth


def create_heightfield(mesh: TriangleMesh, config: NavMeshConfig) -> Heightfield:
    """
    Создать пустой heightfield по границам меша (или config.bmin/bmax).

    Raises:
        GeometryError: Пустой меш.
        ConfigError: Нулевой размер сетки.
    """
    if config.bmin is not None and config.bmax is not None:
        bmin = np.asarray(config.bmin, dtype=np.float64)
        bmax = np.asarray(config.bmax, dtype=np.float64)
    else:
        if mesh.vertex_count == 0:
            raise GeometryError("cannot derive bounds from empty geometry")
        bmin, bmax = mesh.bounds()

    width, depth = calc_grid_size(bmin, bmax, config.cell_size)
    if width <= 0 or depth <= 0:
        raise ConfigError(
            f"grid size {width}x{depth} is empty for cell_size {config.cell_size}"
        )

    max_height = (bmax[1] - bmin[1]) / config.cell_height
    if max_height > SPAN_MAX_HEIGHT:
        raise ConfigError(
            f"vertical extent needs {max_height:.0f} cells, limit is {SPAN_MAX_HEIGHT}"
        )

    return Heightfield(
        width=width,
        depth=depth,
        bmin=bmin.copy(),
        bmax=bmax.copy(),
        cell_size=config.cell_size,
        cell_height=config.cell_height,
    )
