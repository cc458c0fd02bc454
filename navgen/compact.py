"""
CompactHeightfield — компактное представление проходимых спанов.

Проходимые спаны хранятся в параллельных numpy-массивах, индекс спана —
его handle. Спаны одной колонки лежат подряд и упорядочены по высоте.
Связь с соседом хранит абсолютный индекс соседнего спана или NOT_CONNECTED.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Tuple

import numpy as np

from navgen.heightfield import Heightfield
from navgen.types import (
    ConvexVolume,
    DIR_OFFSET_X,
    DIR_OFFSET_Z,
    NOT_CONNECTED,
    NULL_AREA,
    SPAN_MAX_HEIGHT,
)


@dataclass
class CompactHeightfield:
    """
    Компактный heightfield.

    Колонка (x, z) занимает спаны cell_index[c] .. cell_index[c] + cell_count[c],
    где c = x + z * width.
    """

    width: int
    depth: int
    walkable_height: int
    walkable_climb: int
    bmin: np.ndarray
    bmax: np.ndarray
    cell_size: float
    cell_height: float

    cell_index: np.ndarray
    """Индекс первого спана колонки, shape (width * depth,)."""
    cell_count: np.ndarray
    """Число спанов в колонке, shape (width * depth,)."""

    y: np.ndarray
    """Пол спана (smax исходного спана), shape (N,)."""
    h: np.ndarray
    """Просвет до следующего спана, shape (N,)."""
    areas: np.ndarray
    con: np.ndarray
    """Соседние спаны по направлениям, shape (N, 4), NOT_CONNECTED если нет."""

    dist: np.ndarray = field(default=None)
    regions: np.ndarray = field(default=None)
    max_distance: int = 0
    max_region: int = 0

    def __post_init__(self) -> None:
        n = len(self.y)
        if self.dist is None:
            self.dist = np.zeros(n, dtype=np.int32)
        if self.regions is None:
            self.regions = np.zeros(n, dtype=np.int32)

    @property
    def span_count(self) -> int:
        return len(self.y)

    def column(self, x: int, z: int) -> range:
        c = x + z * self.width
        start = int(self.cell_index[c])
        return range(start, start + int(self.cell_count[c]))

    def cells(self) -> Iterator[Tuple[int, int, range]]:
        """Колонки в порядке растра: (x, z, диапазон индексов спанов)."""
        index = self.cell_index.tolist()
        count = self.cell_count.tolist()
        w = self.width
        for z in range(self.depth):
            for x in range(w):
                c = x + z * w
                yield x, z, range(index[c], index[c] + count[c])

    def span_columns(self) -> Tuple[np.ndarray, np.ndarray]:
        """Координаты колонки каждого спана: (xs, zs), shape (N,)."""
        columns = np.repeat(np.arange(self.width * self.depth), self.cell_count)
        return columns % self.width, columns // self.width

    def is_symmetric(self) -> bool:
        """Все связи взаимны."""
        con = self.con
        for d in range(4):
            j = con[:, d]
            valid = j != NOT_CONNECTED
            back = con[j[valid], (d + 2) & 3]
            if np.any(back != np.nonzero(valid)[0]):
                return False
        return True


def build_compact_heightfield(
    walkable_height: int,
    walkable_climb: int,
    hf: Heightfield,
) -> CompactHeightfield:
    """
    Построить компактный heightfield из проходимых спанов.

    Связь в направлении d — первый спан соседней колонки, у которого
    перекрытие просветов >= walkable_height и перепад пола <= walkable_climb.
    Невзаимные связи удаляются.
    """
    w = hf.width
    d = hf.depth

    cell_index = np.zeros(w * d, dtype=np.int64)
    cell_count = np.zeros(w * d, dtype=np.int64)
    ys: List[int] = []
    hs: List[int] = []
    areas: List[int] = []

    for c, spans in enumerate(hf.columns):
        cell_index[c] = len(ys)
        for i, span in enumerate(spans):
            if span.area == NULL_AREA:
                continue
            bot = span.smax
            top = spans[i + 1].smin if i + 1 < len(spans) else SPAN_MAX_HEIGHT
            ys.append(min(max(bot, 0), SPAN_MAX_HEIGHT))
            hs.append(max(top - bot, 0))
            areas.append(span.area)
        cell_count[c] = len(ys) - cell_index[c]

    n = len(ys)
    con = [[NOT_CONNECTED] * 4 for _ in range(n)]
    index = cell_index.tolist()
    count = cell_count.tolist()

    for z in range(d):
        for x in range(w):
            c = x + z * w
            for i in range(index[c], index[c] + count[c]):
                y = ys[i]
                top = y + hs[i]
                for direction in range(4):
                    nx = x + DIR_OFFSET_X[direction]
                    nz = z + DIR_OFFSET_Z[direction]
                    if nx < 0 or nz < 0 or nx >= w or nz >= d:
                        continue
                    nc = nx + nz * w
                    for k in range(index[nc], index[nc] + count[nc]):
                        ny = ys[k]
                        overlap = min(top, ny + hs[k]) - max(y, ny)
                        if overlap >= walkable_height and abs(ny - y) <= walkable_climb:
                            con[i][direction] = k
                            break

    con_array = np.array(con, dtype=np.int64).reshape(-1, 4)
    _remove_one_sided_links(con_array)

    bmax = hf.bmax.copy()
    bmax[1] += walkable_height * hf.cell_height

    return CompactHeightfield(
        width=w,
        depth=d,
        walkable_height=walkable_height,
        walkable_climb=walkable_climb,
        bmin=hf.bmin.copy(),
        bmax=bmax,
        cell_size=hf.cell_size,
        cell_height=hf.cell_height,
        cell_index=cell_index,
        cell_count=cell_count,
        y=np.array(ys, dtype=np.int32),
        h=np.array(hs, dtype=np.int32),
        areas=np.array(areas, dtype=np.int32),
        con=con_array,
    )


def _remove_one_sided_links(con: np.ndarray) -> None:
    n = len(con)
    idx = np.arange(n)
    broken = []
    for d in range(4):
        j = con[:, d]
        valid = j != NOT_CONNECTED
        back = np.full(n, NOT_CONNECTED, dtype=np.int64)
        back[valid] = con[j[valid], (d + 2) & 3]
        broken.append(valid & (back != idx))
    for d in range(4):
        con[broken[d], d] = NOT_CONNECTED


def chamfer_distance(chf: CompactHeightfield, dist: List[int]) -> None:
    """
    Двухпроходное chamfer-преобразование (2 по оси, 3 по диагонали).

    dist изменяется на месте; граничные спаны должны иметь 0.
    """
    con = chf.con.tolist()

    # Проход 1: (-X, -X-Z) и (-Z, -Z+X)
    for x, z, span_range in chf.cells():
        for i in span_range:
            c = con[i]
            a = c[0]
            if a != NOT_CONNECTED:
                nd = dist[a] + 2
                if nd < dist[i]:
                    dist[i] = nd
                aa = con[a][3]
                if aa != NOT_CONNECTED:
                    nd = dist[aa] + 3
                    if nd < dist[i]:
                        dist[i] = nd
            a = c[3]
            if a != NOT_CONNECTED:
                nd = dist[a] + 2
                if nd < dist[i]:
                    dist[i] = nd
                aa = con[a][2]
                if aa != NOT_CONNECTED:
                    nd = dist[aa] + 3
                    if nd < dist[i]:
                        dist[i] = nd

    # Проход 2: (+X, +X+Z) и (+Z, +Z-X)
    for x, z, span_range in reversed(list(chf.cells())):
        for i in reversed(span_range):
            c = con[i]
            a = c[2]
            if a != NOT_CONNECTED:
                nd = dist[a] + 2
                if nd < dist[i]:
                    dist[i] = nd
                aa = con[a][1]
                if aa != NOT_CONNECTED:
                    nd = dist[aa] + 3
                    if nd < dist[i]:
                        dist[i] = nd
            a = c[1]
            if a != NOT_CONNECTED:
                nd = dist[a] + 2
                if nd < dist[i]:
                    dist[i] = nd
                aa = con[a][0]
                if aa != NOT_CONNECTED:
                    nd = dist[aa] + 3
                    if nd < dist[i]:
                        dist[i] = nd


def erode_walkable_area(walkable_radius: int, chf: CompactHeightfield) -> int:
    """
    Сузить проходимую область на радиус агента.

    Спаны ближе walkable_radius к непроходимому или краю становятся NULL_AREA.

    Returns:
        Количество помеченных спанов.
    """
    areas = chf.areas.tolist()
    con = chf.con.tolist()
    dist = [SPAN_MAX_HEIGHT] * chf.span_count

    for i in range(chf.span_count):
        if areas[i] == NULL_AREA:
            dist[i] = 0
            continue
        neighbours = 0
        for a in con[i]:
            if a != NOT_CONNECTED and areas[a] != NULL_AREA:
                neighbours += 1
        if neighbours != 4:
            dist[i] = 0

    chamfer_distance(chf, dist)

    threshold = walkable_radius * 2
    eroded = 0
    for i in range(chf.span_count):
        if dist[i] < threshold and areas[i] != NULL_AREA:
            chf.areas[i] = NULL_AREA
            eroded += 1
    return eroded


def point_in_poly_xz(px: float, pz: float, vertices: np.ndarray) -> bool:
    """Точка внутри многоугольника в плоскости XZ (чётность пересечений)."""
    inside = False
    n = len(vertices)
    j = n - 1
    for i in range(n):
        xi, zi = vertices[i][0], vertices[i][2]
        xj, zj = vertices[j][0], vertices[j][2]
        if (zi > pz) != (zj > pz) and px < (xj - xi) * (pz - zi) / (zj - zi) + xi:
            inside = not inside
        j = i
    return inside


def mark_convex_poly_area(volume: ConvexVolume, chf: CompactHeightfield) -> int:
    """
    Пометить area id объёма у проходимых спанов внутри выпуклого объёма.

    Спан попадает в объём, если центр его ячейки лежит внутри многоугольника
    (XZ), а пол — в [hmin, hmax].

    Returns:
        Количество помеченных спанов.
    """
    if len(volume.vertices) == 0:
        return 0

    vmin = volume.vertices.min(axis=0)
    vmax = volume.vertices.max(axis=0)
    cs = chf.cell_size
    ch = chf.cell_height

    min_x = int((vmin[0] - chf.bmin[0]) / cs)
    max_x = int((vmax[0] - chf.bmin[0]) / cs)
    min_y = int((volume.hmin - chf.bmin[1]) / ch)
    max_y = int((volume.hmax - chf.bmin[1]) / ch)
    min_z = int((vmin[2] - chf.bmin[2]) / cs)
    max_z = int((vmax[2] - chf.bmin[2]) / cs)

    if max_x < 0 or min_x >= chf.width or max_z < 0 or min_z >= chf.depth:
        return 0

    min_x = max(min_x, 0)
    max_x = min(max_x, chf.width - 1)
    min_z = max(min_z, 0)
    max_z = min(max_z, chf.depth - 1)

    marked = 0
    for z in range(min_z, max_z + 1):
        for x in range(min_x, max_x + 1):
            for i in chf.column(x, z):
                if chf.areas[i] == NULL_AREA:
                    continue
                if chf.y[i] < min_y or chf.y[i] > max_y:
                    continue
                px = chf.bmin[0] + (x + 0.5) * cs
                pz = chf.bmin[2] + (z + 0.5) * cs
                if point_in_poly_xz(px, pz, volume.vertices):
                    chf.areas[i] = volume.area
                    marked += 1
    return marked
