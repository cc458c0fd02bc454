"""
Контуры регионов.

Для каждого региона обходится граница по рёбрам ячеек (сырой контур),
затем контур упрощается: сохраняются точки смены соседнего региона,
стены уточняются по Дугласу–Пекеру, длинные рёбра делятся.
Дыры (контуры с отрицательной ориентацией) вшиваются во внешний контур.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from navgen import log
from navgen.compact import CompactHeightfield
from navgen.config import BuildContoursFlags
from navgen.errors import TopologyError
from navgen.types import DIR_OFFSET_X, DIR_OFFSET_Z, NO_REGION, NOT_CONNECTED


CONTOUR_REG_MASK = 0xFFFF
AREA_BORDER = 0x20000

MAX_WALK_ITERATIONS = 40000


@dataclass
class Contour:
    """Замкнутый контур региона. Вершины — (x, y, z, flags) в координатах сетки."""

    region: int
    area: int
    verts: np.ndarray
    """Упрощённый контур, shape (n, 4)."""
    raw_verts: np.ndarray
    """Сырой контур, shape (m, 4)."""

    @property
    def vertex_count(self) -> int:
        return len(self.verts)


@dataclass
class ContourSet:
    """Контуры всех регионов."""

    contours: List[Contour]
    bmin: np.ndarray
    bmax: np.ndarray
    cell_size: float
    cell_height: float
    width: int
    depth: int
    max_error: float
    errors: List[TopologyError] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Геометрические предикаты на целочисленной сетке (x — [0], z — [2])
# ---------------------------------------------------------------------------

def area2(a: Sequence[int], b: Sequence[int], c: Sequence[int]) -> int:
    return (b[0] - a[0]) * (c[2] - a[2]) - (c[0] - a[0]) * (b[2] - a[2])


def left(a, b, c) -> bool:
    return area2(a, b, c) < 0


def left_on(a, b, c) -> bool:
    return area2(a, b, c) <= 0


def collinear(a, b, c) -> bool:
    return area2(a, b, c) == 0


def _intersect_prop(a, b, c, d) -> bool:
    if collinear(a, b, c) or collinear(a, b, d) or collinear(c, d, a) or collinear(c, d, b):
        return False
    return (left(a, b, c) != left(a, b, d)) and (left(c, d, a) != left(c, d, b))


def _between(a, b, c) -> bool:
    if not collinear(a, b, c):
        return False
    if a[0] != b[0]:
        return (a[0] <= c[0] <= b[0]) or (a[0] >= c[0] >= b[0])
    return (a[2] <= c[2] <= b[2]) or (a[2] >= c[2] >= b[2])


def intersect(a, b, c, d) -> bool:
    """Отрезки ab и cd пересекаются (включая касание)."""
    if _intersect_prop(a, b, c, d):
        return True
    return _between(a, b, c) or _between(a, b, d) or _between(c, d, a) or _between(c, d, b)


def vequal_xz(a, b) -> bool:
    return a[0] == b[0] and a[2] == b[2]


def calc_area2(verts: Sequence[Sequence[int]]) -> int:
    """Удвоенная ориентированная площадь контура. Отрицательная — дыра."""
    area = 0
    n = len(verts)
    j = n - 1
    for i in range(n):
        vi = verts[i]
        vj = verts[j]
        area += vi[0] * vj[2] - vj[0] * vi[2]
        j = i
    return area


def distance_pt_seg_sq(x: float, z: float, px: float, pz: float, qx: float, qz: float) -> float:
    """Квадрат расстояния от точки до отрезка pq в плоскости XZ."""
    pqx = qx - px
    pqz = qz - pz
    dx = x - px
    dz = z - pz
    d = pqx * pqx + pqz * pqz
    t = pqx * dx + pqz * dz
    if d > 0:
        t /= d
    t = min(max(t, 0.0), 1.0)
    dx = px + t * pqx - x
    dz = pz + t * pqz - z
    return dx * dx + dz * dz


# ---------------------------------------------------------------------------
# Обход границы
# ---------------------------------------------------------------------------

def _corner_height(chf: CompactHeightfield, con: List[List[int]], i: int, direction: int) -> int:
    y = chf.y
    height = int(y[i])
    dirp = (direction + 1) & 3

    a = con[i][direction]
    if a != NOT_CONNECTED:
        height = max(height, int(y[a]))
        a2 = con[a][dirp]
        if a2 != NOT_CONNECTED:
            height = max(height, int(y[a2]))

    a = con[i][dirp]
    if a != NOT_CONNECTED:
        height = max(height, int(y[a]))
        a2 = con[a][direction]
        if a2 != NOT_CONNECTED:
            height = max(height, int(y[a2]))

    return height


def walk_contour(
    chf: CompactHeightfield,
    x: int,
    z: int,
    i: int,
    flags: List[int],
    con: List[List[int]],
    regions: List[int],
    areas: List[int],
) -> List[List[int]]:
    """
    Обойти границу региона, начиная со спана i.

    На граничном ребре фиксируется угол и направление поворачивается по часовой,
    иначе шаг к соседу и поворот против часовой. Посещённые рёбра снимаются
    из flags.

    Raises:
        TopologyError: Обход не замкнулся.
    """
    region = regions[i]
    direction = 0
    while not flags[i] & (1 << direction):
        direction += 1

    start_dir = direction
    start_i = i
    area = areas[i]
    points: List[List[int]] = []

    for _ in range(MAX_WALK_ITERATIONS):
        if flags[i] & (1 << direction):
            py = _corner_height(chf, con, i, direction)
            px = x
            pz = z
            if direction == 0:
                pz += 1
            elif direction == 1:
                px += 1
                pz += 1
            elif direction == 2:
                px += 1

            r = NO_REGION
            a = con[i][direction]
            area_border = False
            if a != NOT_CONNECTED:
                r = regions[a]
                if areas[a] != area:
                    area_border = True
            if area_border:
                r |= AREA_BORDER

            points.append([px, py, pz, r])
            flags[i] &= ~(1 << direction)
            direction = (direction + 1) & 3
        else:
            ni = con[i][direction]
            if ni == NOT_CONNECTED:
                raise TopologyError(region, f"contour walk lost its neighbour at ({x}, {z})")
            x += DIR_OFFSET_X[direction]
            z += DIR_OFFSET_Z[direction]
            i = ni
            direction = (direction + 3) & 3

        if start_i == i and start_dir == direction:
            return points

    raise TopologyError(
        region, f"contour walk did not close after {MAX_WALK_ITERATIONS} steps"
    )


# ---------------------------------------------------------------------------
# Упрощение
# ---------------------------------------------------------------------------

def simplify_contour(
    points: List[List[int]],
    max_error: float,
    max_edge_len: int,
    flags: BuildContoursFlags = BuildContoursFlags.DEFAULT,
) -> List[List[int]]:
    """
    Упростить сырой контур.

    Returns:
        Вершины [x, y, z, flags]; flags — регион за ребром, начинающимся
        в вершине, плюс AREA_BORDER.
    """
    pn = len(points)
    simplified: List[List[int]] = []

    has_connections = any(p[3] & CONTOUR_REG_MASK for p in points)
    if has_connections:
        # Точки смены соседа — порталы, сохраняются всегда
        for i in range(pn):
            ii = (i + 1) % pn
            different_regs = (points[i][3] & CONTOUR_REG_MASK) != (points[ii][3] & CONTOUR_REG_MASK)
            area_borders = (points[i][3] & AREA_BORDER) != (points[ii][3] & AREA_BORDER)
            if different_regs or area_borders:
                simplified.append([points[i][0], points[i][1], points[i][2], i])

    if not simplified:
        ll = 0
        ur = 0
        for i, p in enumerate(points):
            lp = points[ll]
            up = points[ur]
            if p[0] < lp[0] or (p[0] == lp[0] and p[2] < lp[2]):
                ll = i
            if p[0] > up[0] or (p[0] == up[0] and p[2] > up[2]):
                ur = i
        simplified.append([points[ll][0], points[ll][1], points[ll][2], ll])
        simplified.append([points[ur][0], points[ur][1], points[ur][2], ur])

    # Дуглас–Пекер по стенам
    max_error_sq = max_error * max_error
    i = 0
    while i < len(simplified):
        ii = (i + 1) % len(simplified)
        ax, az, ai = simplified[i][0], simplified[i][2], simplified[i][3]
        bx, bz, bi = simplified[ii][0], simplified[ii][2], simplified[ii][3]

        max_d = 0.0
        max_i = -1

        # Обход сегмента в лексикографическом порядке
        if bx > ax or (bx == ax and bz > az):
            cinc = 1
            ci = (ai + cinc) % pn
            endi = bi
        else:
            cinc = pn - 1
            ci = (bi + cinc) % pn
            endi = ai
            ax, bx = bx, ax
            az, bz = bz, az

        if (points[ci][3] & CONTOUR_REG_MASK) == 0 or (points[ci][3] & AREA_BORDER):
            while ci != endi:
                d = distance_pt_seg_sq(points[ci][0], points[ci][2], ax, az, bx, bz)
                if d > max_d:
                    max_d = d
                    max_i = ci
                ci = (ci + cinc) % pn

        if max_i != -1 and max_d > max_error_sq:
            p = points[max_i]
            simplified.insert(i + 1, [p[0], p[1], p[2], max_i])
        else:
            i += 1

    # Деление длинных рёбер
    tessellate_mask = BuildContoursFlags.TESSELLATE_WALL_EDGES | BuildContoursFlags.TESSELLATE_AREA_EDGES
    if max_edge_len > 0 and flags & tessellate_mask:
        i = 0
        while i < len(simplified):
            ii = (i + 1) % len(simplified)
            ax, az, ai = simplified[i][0], simplified[i][2], simplified[i][3]
            bx, bz, bi = simplified[ii][0], simplified[ii][2], simplified[ii][3]

            max_i = -1
            ci = (ai + 1) % pn

            tess = False
            if flags & BuildContoursFlags.TESSELLATE_WALL_EDGES and (points[ci][3] & CONTOUR_REG_MASK) == 0:
                tess = True
            if flags & BuildContoursFlags.TESSELLATE_AREA_EDGES and points[ci][3] & AREA_BORDER:
                tess = True

            if tess:
                dx = bx - ax
                dz = bz - az
                if dx * dx + dz * dz > max_edge_len * max_edge_len:
                    n = bi + pn - ai if bi < ai else bi - ai
                    if n > 1:
                        if bx > ax or (bx == ax and bz > az):
                            max_i = (ai + n // 2) % pn
                        else:
                            max_i = (ai + (n + 1) // 2) % pn

            if max_i != -1:
                p = points[max_i]
                simplified.insert(i + 1, [p[0], p[1], p[2], max_i])
            else:
                i += 1

    # Флаги: регион за ребром, начинающимся в вершине
    for v in simplified:
        ai = (v[3] + 1) % pn
        v[3] = points[ai][3] & (CONTOUR_REG_MASK | AREA_BORDER)

    return simplified


def remove_degenerate_segments(verts: List[List[int]]) -> List[List[int]]:
    """Удалить подряд идущие вершины с одинаковыми (x, z)."""
    result = list(verts)
    i = 0
    while i < len(result) and len(result) > 1:
        ni = (i + 1) % len(result)
        if vequal_xz(result[i], result[ni]):
            del result[i]
        else:
            i += 1
    return result


# ---------------------------------------------------------------------------
# Дыры
# ---------------------------------------------------------------------------

def _in_cone(i: int, verts: List[List[int]], pj: Sequence[int]) -> bool:
    n = len(verts)
    pi = verts[i]
    pi1 = verts[(i + 1) % n]
    pin1 = verts[(i - 1) % n]

    if left_on(pin1, pi, pi1):
        return left(pi, pj, pin1) and left(pj, pi, pi1)
    return not (left_on(pi, pj, pi1) and left_on(pj, pi, pin1))


def _intersect_seg_contour(d0, d1, skip: int, verts: List[List[int]]) -> bool:
    n = len(verts)
    for k in range(n):
        k1 = (k + 1) % n
        if skip == k or skip == k1:
            continue
        p0 = verts[k]
        p1 = verts[k1]
        if vequal_xz(d0, p0) or vequal_xz(d1, p0) or vequal_xz(d0, p1) or vequal_xz(d1, p1):
            continue
        if intersect(d0, d1, p0, p1):
            return True
    return False


def _leftmost_vertex(verts: List[List[int]]) -> int:
    best = 0
    for i, v in enumerate(verts):
        b = verts[best]
        if v[0] < b[0] or (v[0] == b[0] and v[2] < b[2]):
            best = i
    return best


def merge_region_holes(region: int, outline: List[List[int]], holes: List[List[List[int]]]) -> List[List[int]]:
    """
    Вшить дыры во внешний контур кратчайшими непересекающимися диагоналями.

    Дыры обрабатываются слева направо по самой левой вершине.

    Raises:
        TopologyError: Для дыры не нашлось допустимой диагонали.
    """
    ordered = []
    for hole in holes:
        leftmost = _leftmost_vertex(hole)
        ordered.append((hole[leftmost][0], hole[leftmost][2], leftmost, hole))
    ordered.sort(key=lambda item: (item[0], item[1]))

    result = outline
    for s, (_, _, leftmost, hole) in enumerate(ordered):
        index = -1
        best_vertex = leftmost

        for _ in range(len(hole)):
            corner = hole[best_vertex]
            diagonals = []
            for j, v in enumerate(result):
                if _in_cone(j, result, corner):
                    dx = v[0] - corner[0]
                    dz = v[2] - corner[2]
                    diagonals.append((dx * dx + dz * dz, j))
            diagonals.sort()

            for _, j in diagonals:
                pt = result[j]
                crossing = _intersect_seg_contour(pt, corner, j, result)
                k = s
                while not crossing and k < len(ordered):
                    crossing = _intersect_seg_contour(pt, corner, -1, ordered[k][3])
                    k += 1
                if not crossing:
                    index = j
                    break

            if index != -1:
                break
            best_vertex = (best_vertex + 1) % len(hole)

        if index == -1:
            raise TopologyError(region, "failed to find a merge diagonal for a hole")

        result = _merge_contours(result, hole, index, best_vertex)

    return result


def _merge_contours(ca: List[List[int]], cb: List[List[int]], ia: int, ib: int) -> List[List[int]]:
    merged = []
    na = len(ca)
    nb = len(cb)
    for _ in range(na + 1):
        merged.append(list(ca[ia]))
        ia = (ia + 1) % na
    for _ in range(nb + 1):
        merged.append(list(cb[ib]))
        ib = (ib + 1) % nb
    return merged


# ---------------------------------------------------------------------------
# Построение
# ---------------------------------------------------------------------------

def _boundary_flags(chf: CompactHeightfield, con: List[List[int]], regions: List[int]) -> List[int]:
    flags = [0] * chf.span_count
    for i in range(chf.span_count):
        r = regions[i]
        if r == NO_REGION:
            continue
        same = 0
        for direction in range(4):
            a = con[i][direction]
            if a != NOT_CONNECTED and regions[a] == r:
                same |= 1 << direction
        flags[i] = same ^ 0xF
    return flags


def build_contours(
    chf: CompactHeightfield,
    max_error: float,
    max_edge_len: int,
    flags: BuildContoursFlags = BuildContoursFlags.DEFAULT,
) -> ContourSet:
    """
    Построить контуры всех регионов.

    Регион, для которого обход не замкнулся или дыру не удалось вшить,
    пропускается; ошибка сохраняется в ContourSet.errors.

    Args:
        chf: Компактный heightfield с размеченными регионами.
        max_error: Допустимое отклонение упрощённой стены от сырой, в ячейках.
        max_edge_len: Максимальная длина ребра стены в ячейках (0 — без ограничения).
        flags: Какие рёбра делить по max_edge_len.
    """
    con = chf.con.tolist()
    regions = chf.regions.tolist()
    areas = chf.areas.tolist()
    boundary = _boundary_flags(chf, con, regions)

    cset = ContourSet(
        contours=[],
        bmin=chf.bmin.copy(),
        bmax=chf.bmax.copy(),
        cell_size=chf.cell_size,
        cell_height=chf.cell_height,
        width=chf.width,
        depth=chf.depth,
        max_error=max_error,
    )

    failed: Dict[int, TopologyError] = {}
    loops: List[Contour] = []

    for x, z, span_range in chf.cells():
        for i in span_range:
            if boundary[i] == 0 or boundary[i] == 0xF:
                boundary[i] = 0
                continue
            region = regions[i]
            if region == NO_REGION or region in failed:
                continue

            try:
                raw = walk_contour(chf, x, z, i, boundary, con, regions, areas)
            except TopologyError as e:
                failed[region] = e
                continue

            simplified = simplify_contour(raw, max_error, max_edge_len, flags)
            simplified = remove_degenerate_segments(simplified)

            if len(simplified) < 3:
                log.warn(
                    f"[Contours] Region {region}: simplified contour has "
                    f"{len(simplified)} vertices, skipped"
                )
                continue

            loops.append(
                Contour(
                    region=region,
                    area=areas[i],
                    verts=np.array(simplified, dtype=np.int32).reshape(-1, 4),
                    raw_verts=np.array(raw, dtype=np.int32).reshape(-1, 4),
                )
            )

    outlines: Dict[int, List[Contour]] = {}
    holes: Dict[int, List[Contour]] = {}
    for contour in loops:
        if contour.region in failed:
            continue
        if calc_area2(contour.verts.tolist()) < 0:
            holes.setdefault(contour.region, []).append(contour)
        else:
            outlines.setdefault(contour.region, []).append(contour)

    for region in sorted(set(outlines) | set(holes)):
        if region in failed:
            continue
        region_outlines = outlines.get(region, [])
        region_holes = holes.get(region, [])

        if len(region_outlines) != 1:
            failed[region] = TopologyError(
                region, f"expected one outline, found {len(region_outlines)}"
            )
            continue

        outline = region_outlines[0]
        if region_holes:
            try:
                merged = merge_region_holes(
                    region,
                    outline.verts.tolist(),
                    [h.verts.tolist() for h in region_holes],
                )
            except TopologyError as e:
                failed[region] = e
                continue
            outline.verts = np.array(merged, dtype=np.int32).reshape(-1, 4)

        cset.contours.append(outline)

    for region in sorted(failed):
        log.warn(f"[Contours] {failed[region]}")
        cset.errors.append(failed[region])

    return cset
