"""
Полигональная навигационная сетка из контуров.

Каждый контур триангулируется отсечением ушей (всегда ухо с кратчайшей
диагональю), затем треугольники жадно сливаются в выпуклые полигоны
не более чем из max_verts_per_poly вершин. Смежность — по общим рёбрам.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from navgen import log
from navgen.contours import ContourSet, area2, intersect, left, left_on, vequal_xz


NULL_INDEX = -1
_EAR_FLAG = 0x80000000
_INDEX_MASK = 0x0FFFFFFF


@dataclass
class PolyMesh:
    """
    Полигональная сетка в координатах сетки вокселей.

    Мировые координаты вершины: bmin + verts * (cell_size, cell_height, cell_size).
    """

    verts: np.ndarray
    """Квантованные вершины, shape (nv, 3)."""
    polys: np.ndarray
    """Индексы вершин полигонов, shape (np, nvp), дополнены -1."""
    neighbors: np.ndarray
    """Соседний полигон через ребро j (от вершины j к j+1), -1 — граница."""
    regions: np.ndarray
    areas: np.ndarray
    bmin: np.ndarray
    bmax: np.ndarray
    cell_size: float
    cell_height: float
    max_verts_per_poly: int
    max_edge_error: float

    @property
    def poly_count(self) -> int:
        return len(self.polys)

    @property
    def vertex_count(self) -> int:
        return len(self.verts)

    def poly_vertices(self, i: int) -> List[int]:
        """Индексы вершин полигона i без заполнителей."""
        return [int(v) for v in self.polys[i] if v != NULL_INDEX]

    def world_vertices(self) -> np.ndarray:
        """Вершины в мировых координатах, shape (nv, 3)."""
        scale = np.array([self.cell_size, self.cell_height, self.cell_size])
        return self.bmin + self.verts.astype(np.float64) * scale


# ---------------------------------------------------------------------------
# Триангуляция
# ---------------------------------------------------------------------------

def _prev(i: int, n: int) -> int:
    return i - 1 if i - 1 >= 0 else n - 1


def _next(i: int, n: int) -> int:
    return i + 1 if i + 1 < n else 0


def _intersect_prop_only(a, b, c, d) -> bool:
    if area2(a, b, c) == 0 or area2(a, b, d) == 0 or area2(c, d, a) == 0 or area2(c, d, b) == 0:
        return False
    return (left(a, b, c) != left(a, b, d)) and (left(c, d, a) != left(c, d, b))


def _diagonalie(i: int, j: int, verts, indices: List[int], loose: bool) -> bool:
    n = len(indices)
    d0 = verts[indices[i] & _INDEX_MASK]
    d1 = verts[indices[j] & _INDEX_MASK]
    for k in range(n):
        k1 = _next(k, n)
        if k == i or k1 == i or k == j or k1 == j:
            continue
        p0 = verts[indices[k] & _INDEX_MASK]
        p1 = verts[indices[k1] & _INDEX_MASK]
        if vequal_xz(d0, p0) or vequal_xz(d1, p0) or vequal_xz(d0, p1) or vequal_xz(d1, p1):
            continue
        if loose:
            if _intersect_prop_only(d0, d1, p0, p1):
                return False
        elif intersect(d0, d1, p0, p1):
            return False
    return True


def _in_cone(i: int, j: int, verts, indices: List[int], loose: bool) -> bool:
    n = len(indices)
    pi = verts[indices[i] & _INDEX_MASK]
    pj = verts[indices[j] & _INDEX_MASK]
    pi1 = verts[indices[_next(i, n)] & _INDEX_MASK]
    pin1 = verts[indices[_prev(i, n)] & _INDEX_MASK]

    if left_on(pin1, pi, pi1):
        if loose:
            return left_on(pi, pj, pin1) and left_on(pj, pi, pi1)
        return left(pi, pj, pin1) and left(pj, pi, pi1)
    return not (left_on(pi, pj, pi1) and left_on(pj, pi, pin1))


def _diagonal(i: int, j: int, verts, indices: List[int], loose: bool = False) -> bool:
    return _in_cone(i, j, verts, indices, loose) and _diagonalie(i, j, verts, indices, loose)


def triangulate(verts: Sequence[Sequence[int]]) -> Tuple[List[Tuple[int, int, int]], bool]:
    """
    Триангуляция простого многоугольника отсечением ушей.

    На каждом шаге отсекается ухо с кратчайшей диагональю. Если строгих
    ушей нет, используется ослабленная проверка конуса.

    Args:
        verts: Вершины многоугольника (x, y, z, ...).

    Returns:
        (triangles, ok): тройки индексов и признак полной триангуляции.
    """
    n = len(verts)
    indices = list(range(n))
    tris: List[Tuple[int, int, int]] = []

    for i in range(n):
        i1 = _next(i, n)
        i2 = _next(i1, n)
        if _diagonal(i, i2, verts, indices):
            indices[i1] |= _EAR_FLAG

    while n > 3:
        min_len = -1
        mini = -1
        for i in range(n):
            i1 = _next(i, n)
            if indices[i1] & _EAR_FLAG:
                p0 = verts[indices[i] & _INDEX_MASK]
                p2 = verts[indices[_next(i1, n)] & _INDEX_MASK]
                dx = p2[0] - p0[0]
                dz = p2[2] - p0[2]
                length = dx * dx + dz * dz
                if min_len < 0 or length < min_len:
                    min_len = length
                    mini = i

        if mini == -1:
            # Ослабленная проверка: допускаем вырожденные конусы
            for i in range(n):
                i1 = _next(i, n)
                i2 = _next(i1, n)
                if _diagonal(i, i2, verts, indices, loose=True):
                    p0 = verts[indices[i] & _INDEX_MASK]
                    p2 = verts[indices[i2] & _INDEX_MASK]
                    dx = p2[0] - p0[0]
                    dz = p2[2] - p0[2]
                    length = dx * dx + dz * dz
                    if min_len < 0 or length < min_len:
                        min_len = length
                        mini = i
            if mini == -1:
                return tris, False

        i = mini
        i1 = _next(i, n)
        i2 = _next(i1, n)
        tris.append((
            indices[i] & _INDEX_MASK,
            indices[i1] & _INDEX_MASK,
            indices[i2] & _INDEX_MASK,
        ))

        del indices[i1]
        n -= 1
        if i1 >= n:
            i1 = 0
        i = _prev(i1, n)

        if _diagonal(_prev(i, n), i1, verts, indices):
            indices[i] |= _EAR_FLAG
        else:
            indices[i] &= _INDEX_MASK

        if _diagonal(i, _next(i1, n), verts, indices):
            indices[i1] |= _EAR_FLAG
        else:
            indices[i1] &= _INDEX_MASK

    tris.append((
        indices[0] & _INDEX_MASK,
        indices[1] & _INDEX_MASK,
        indices[2] & _INDEX_MASK,
    ))
    return tris, True


# ---------------------------------------------------------------------------
# Слияние полигонов
# ---------------------------------------------------------------------------

def _uleft(a, b, c) -> bool:
    return (b[0] - a[0]) * (c[2] - a[2]) - (c[0] - a[0]) * (b[2] - a[2]) < 0


def poly_merge_value(
    pa: List[int],
    pb: List[int],
    verts: List[Tuple[int, int, int]],
    nvp: int,
) -> Tuple[int, int, int]:
    """
    Оценка слияния двух полигонов.

    Returns:
        (value, ea, eb): квадрат длины общего ребра и индексы ребра в pa и pb;
        value = -1, если слияние невозможно (нет общего ребра, невыпукло
        или слишком много вершин).
    """
    na = len(pa)
    nb = len(pb)
    if na + nb - 2 > nvp:
        return -1, -1, -1

    ea = -1
    eb = -1
    for i in range(na):
        va0 = pa[i]
        va1 = pa[(i + 1) % na]
        if va0 > va1:
            va0, va1 = va1, va0
        for j in range(nb):
            vb0 = pb[j]
            vb1 = pb[(j + 1) % nb]
            if vb0 > vb1:
                vb0, vb1 = vb1, vb0
            if va0 == vb0 and va1 == vb1:
                ea = i
                eb = j
                break
        if ea != -1:
            break

    if ea == -1 or eb == -1:
        return -1, -1, -1

    va = pa[(ea + na - 1) % na]
    vb = pa[ea]
    vc = pb[(eb + 2) % nb]
    if not _uleft(verts[va], verts[vb], verts[vc]):
        return -1, -1, -1

    va = pb[(eb + nb - 1) % nb]
    vb = pb[eb]
    vc = pa[(ea + 2) % na]
    if not _uleft(verts[va], verts[vb], verts[vc]):
        return -1, -1, -1

    va = pa[ea]
    vb = pa[(ea + 1) % na]
    dx = verts[va][0] - verts[vb][0]
    dz = verts[va][2] - verts[vb][2]
    return dx * dx + dz * dz, ea, eb


def merge_poly_verts(pa: List[int], pb: List[int], ea: int, eb: int) -> List[int]:
    na = len(pa)
    nb = len(pb)
    merged = [pa[(ea + 1 + i) % na] for i in range(na - 1)]
    merged.extend(pb[(eb + 1 + i) % nb] for i in range(nb - 1))
    return merged


def _merge_polys(polys: List[List[int]], verts: List[Tuple[int, int, int]], nvp: int) -> None:
    while True:
        best_value = 0
        best = None
        for j in range(len(polys) - 1):
            for k in range(j + 1, len(polys)):
                value, ea, eb = poly_merge_value(polys[j], polys[k], verts, nvp)
                if value > best_value:
                    best_value = value
                    best = (j, k, ea, eb)

        if best is None:
            return

        pa, pb, ea, eb = best
        polys[pa] = merge_poly_verts(polys[pa], polys[pb], ea, eb)
        last = polys.pop()
        if pb < len(polys):
            polys[pb] = last


# ---------------------------------------------------------------------------
# Сборка
# ---------------------------------------------------------------------------

class _VertexTable:
    """Дедупликация вершин по (x, z) с допуском по высоте."""

    def __init__(self) -> None:
        self.verts: List[Tuple[int, int, int]] = []
        self._buckets: Dict[Tuple[int, int], List[int]] = {}

    def add(self, x: int, y: int, z: int) -> int:
        bucket = self._buckets.setdefault((x, z), [])
        for i in bucket:
            if abs(self.verts[i][1] - y) <= 2:
                return i
        index = len(self.verts)
        self.verts.append((x, y, z))
        bucket.append(index)
        return index


def _build_adjacency(polys: List[List[int]]) -> List[List[int]]:
    neighbors = [[NULL_INDEX] * len(p) for p in polys]
    edges: Dict[Tuple[int, int], Tuple[int, int]] = {}

    for pi, poly in enumerate(polys):
        n = len(poly)
        for j in range(n):
            v0 = poly[j]
            v1 = poly[(j + 1) % n]
            if v0 < v1:
                edges[(v0, v1)] = (pi, j)

    for pi, poly in enumerate(polys):
        n = len(poly)
        for j in range(n):
            v0 = poly[j]
            v1 = poly[(j + 1) % n]
            if v0 > v1:
                match = edges.pop((v1, v0), None)
                if match is None:
                    continue
                other, edge = match
                if other == pi:
                    continue
                neighbors[other][edge] = pi
                neighbors[pi][j] = other

    return neighbors


def build_poly_mesh(cset: ContourSet, max_verts_per_poly: int) -> PolyMesh:
    """
    Построить полигональную сетку из набора контуров.

    Args:
        cset: Контуры регионов.
        max_verts_per_poly: Максимум вершин в полигоне (>= 3).

    Returns:
        PolyMesh с выпуклыми полигонами и смежностью.
    """
    nvp = max_verts_per_poly
    table = _VertexTable()
    all_polys: List[List[int]] = []
    regions: List[int] = []
    areas: List[int] = []

    for contour in cset.contours:
        cverts = contour.verts.tolist()
        if len(cverts) < 3:
            continue

        tris, ok = triangulate(cverts)
        if not ok:
            log.warn(f"[PolyMesh] Bad triangulation of region {contour.region} contour")

        indices = [table.add(v[0], v[1], v[2]) for v in cverts]

        polys: List[List[int]] = []
        for a, b, c in tris:
            ia, ib, ic = indices[a], indices[b], indices[c]
            if ia != ib and ia != ic and ib != ic:
                polys.append([ia, ib, ic])

        if not polys:
            continue

        if nvp > 3:
            _merge_polys(polys, table.verts, nvp)

        for poly in polys:
            all_polys.append(poly)
            regions.append(contour.region)
            areas.append(contour.area)

    neighbors = _build_adjacency(all_polys)

    count = len(all_polys)
    poly_array = np.full((count, nvp), NULL_INDEX, dtype=np.int32)
    neighbor_array = np.full((count, nvp), NULL_INDEX, dtype=np.int32)
    for i, poly in enumerate(all_polys):
        poly_array[i, :len(poly)] = poly
        neighbor_array[i, :len(poly)] = neighbors[i]

    return PolyMesh(
        verts=np.array(table.verts, dtype=np.int32).reshape(-1, 3),
        polys=poly_array,
        neighbors=neighbor_array,
        regions=np.array(regions, dtype=np.int32),
        areas=np.array(areas, dtype=np.int32),
        bmin=cset.bmin.copy(),
        bmax=cset.bmax.copy(),
        cell_size=cset.cell_size,
        cell_height=cset.cell_height,
        max_verts_per_poly=nvp,
        max_edge_error=cset.max_error,
    )
