"""
Детальная сетка высот поверх полигонов навигационной сетки.

Для каждого полигона:
1. Собирается патч высот региона из компактного heightfield
2. Рёбра полигона семплируются и упрощаются по допустимой ошибке высоты
3. Внутренние точки сетки sample_dist добавляются по одной, начиная
   с наибольшей ошибки, с перетриангуляцией (scipy Delaunay)

Полигоны обрабатываются независимо; при max_workers > 1 — в пуле потоков,
результаты собираются в порядке полигонов.
"""

from __future__ import annotations

import math
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import Delaunay, QhullError

from navgen import log
from navgen.compact import CompactHeightfield
from navgen.polymesh import NULL_INDEX, PolyMesh
from navgen.types import NO_REGION, NOT_CONNECTED


MAX_VERTS = 127
MAX_VERTS_PER_EDGE = 32
UNSET_HEIGHT = -1
EDGE_BOUNDARY = 1


@dataclass
class PolyMeshDetail:
    """
    Детальные подсетки полигонов.

    meshes[i] = (vert_base, vert_count, tri_base, tri_count).
    Первые vert_count вершин подсетки — вершины полигона i в том же порядке.
    tris — локальные индексы вершин и флаги граничных рёбер
    (2 бита на ребро: ab, bc, ca).
    """

    meshes: np.ndarray
    verts: np.ndarray
    tris: np.ndarray

    @property
    def mesh_count(self) -> int:
        return len(self.meshes)

    def submesh(self, i: int) -> Tuple[np.ndarray, np.ndarray]:
        """Вершины и треугольники подсетки полигона i."""
        vbase, vcount, tbase, tcount = (int(v) for v in self.meshes[i])
        return self.verts[vbase:vbase + vcount], self.tris[tbase:tbase + tcount]


@dataclass
class _HeightPatch:
    xmin: int
    zmin: int
    width: int
    depth: int
    data: np.ndarray

    def get(self, hx: int, hz: int) -> int:
        return int(self.data[hz, hx])


def _distance_pt_seg_2d_sq(px, pz, ax, az, bx, bz) -> float:
    pqx = bx - ax
    pqz = bz - az
    dx = px - ax
    dz = pz - az
    d = pqx * pqx + pqz * pqz
    t = pqx * dx + pqz * dz
    if d > 0:
        t /= d
    t = min(max(t, 0.0), 1.0)
    dx = ax + t * pqx - px
    dz = az + t * pqz - pz
    return dx * dx + dz * dz


def _distance_pt_seg_sq(p, a, b) -> float:
    """Квадрат расстояния от точки до отрезка в 3D."""
    pq = b - a
    d = float(np.dot(pq, pq))
    t = float(np.dot(pq, p - a))
    if d > 0:
        t /= d
    t = min(max(t, 0.0), 1.0)
    diff = a + t * pq - p
    return float(np.dot(diff, diff))


def _dist_to_poly(poly: np.ndarray, x: float, z: float) -> float:
    """Расстояние до границы полигона в XZ; отрицательное внутри."""
    dmin = math.inf
    inside = False
    n = len(poly)
    j = n - 1
    for i in range(n):
        vi = poly[i]
        vj = poly[j]
        if (vi[2] > z) != (vj[2] > z) and x < (vj[0] - vi[0]) * (z - vi[2]) / (vj[2] - vi[2]) + vi[0]:
            inside = not inside
        dmin = min(dmin, _distance_pt_seg_2d_sq(x, z, vj[0], vj[2], vi[0], vi[2]))
        j = i
    d = math.sqrt(dmin)
    return -d if inside else d


def _poly_min_extent(poly: np.ndarray) -> float:
    min_dist = math.inf
    n = len(poly)
    for i in range(n):
        ni = (i + 1) % n
        p1 = poly[i]
        p2 = poly[ni]
        max_edge_dist = 0.0
        for j in range(n):
            if j == i or j == ni:
                continue
            d = _distance_pt_seg_2d_sq(poly[j][0], poly[j][2], p1[0], p1[2], p2[0], p2[2])
            max_edge_dist = max(max_edge_dist, d)
        min_dist = min(min_dist, max_edge_dist)
    return math.sqrt(min_dist)


def _poly_area2(poly: np.ndarray) -> float:
    area = 0.0
    n = len(poly)
    for i in range(n):
        j = (i + 1) % n
        area += poly[i][0] * poly[j][2] - poly[j][0] * poly[i][2]
    return area


# ---------------------------------------------------------------------------
# Патч высот
# ---------------------------------------------------------------------------

def _height_patch(
    chf: CompactHeightfield,
    pmesh: PolyMesh,
    poly_index: int,
    columns: Tuple[np.ndarray, np.ndarray],
) -> _HeightPatch:
    vids = pmesh.poly_vertices(poly_index)
    pverts = pmesh.verts[vids]
    region = int(pmesh.regions[poly_index])

    xmin = max(0, int(pverts[:, 0].min()) - 1)
    xmax = min(chf.width, int(pverts[:, 0].max()) + 1)
    zmin = max(0, int(pverts[:, 2].min()) - 1)
    zmax = min(chf.depth, int(pverts[:, 2].max()) + 1)
    width = max(xmax - xmin, 1)
    depth = max(zmax - zmin, 1)

    data = np.full((depth, width), UNSET_HEIGHT, dtype=np.int64)
    queue: deque[Tuple[int, int, int]] = deque()

    y = chf.y
    con = chf.con
    regions = chf.regions

    if region != NO_REGION:
        for hz in range(depth):
            z = zmin + hz
            for hx in range(width):
                x = xmin + hx
                for i in chf.column(x, z):
                    if regions[i] != region:
                        continue
                    data[hz, hx] = y[i]
                    for a in con[i]:
                        if a != NOT_CONNECTED and regions[a] != region:
                            queue.append((x, z, i))
                            break
                    break

    if not queue and np.all(data == UNSET_HEIGHT):
        # Регион не найден: стартуем от спанов, ближайших к вершинам полигона
        for vx, vy, vz in pverts.tolist():
            x = min(max(vx, 0), chf.width - 1)
            z = min(max(vz, 0), chf.depth - 1)
            best = -1
            best_d = None
            for i in chf.column(x, z):
                d = abs(int(y[i]) - vy)
                if best_d is None or d < best_d:
                    best = i
                    best_d = d
            if best == -1:
                continue
            hx = x - xmin
            hz = z - zmin
            if 0 <= hx < width and 0 <= hz < depth and data[hz, hx] == UNSET_HEIGHT:
                data[hz, hx] = y[best]
                queue.append((x, z, best))

    # Заливка недостающих ячеек по связям от границы региона
    xs, zs = columns
    while queue:
        cx, cz, ci = queue.popleft()
        for a in con[ci]:
            if a == NOT_CONNECTED:
                continue
            ax = int(xs[a])
            az = int(zs[a])
            hx = ax - xmin
            hz = az - zmin
            if hx < 0 or hz < 0 or hx >= width or hz >= depth:
                continue
            if data[hz, hx] != UNSET_HEIGHT:
                continue
            data[hz, hx] = y[a]
            queue.append((ax, az, int(a)))

    return _HeightPatch(xmin=xmin, zmin=zmin, width=width, depth=depth, data=data)


def _sample_height(
    hp: _HeightPatch,
    fx: float,
    fy: float,
    fz: float,
    cs: float,
    ch: float,
    radius: int,
) -> float:
    """Высота патча в точке (fx, fz); спиральный поиск ближайшей по высоте при пропуске."""
    ics = 1.0 / cs
    ix = int(math.floor(fx * ics + 0.01))
    iz = int(math.floor(fz * ics + 0.01))
    ix = min(max(ix - hp.xmin, 0), hp.width - 1)
    iz = min(max(iz - hp.zmin, 0), hp.depth - 1)
    h = hp.get(ix, iz)

    if h == UNSET_HEIGHT:
        x, z = 1, 0
        dx, dz = 1, 0
        max_size = radius * 2 + 1
        max_iter = max_size * max_size - 1
        next_ring_start = 8
        next_ring_iters = 16
        dmin = math.inf
        for i in range(max_iter):
            nx = ix + x
            nz = iz + z
            if 0 <= nx < hp.width and 0 <= nz < hp.depth:
                nh = hp.get(nx, nz)
                if nh != UNSET_HEIGHT:
                    d = abs(nh * ch - fy)
                    if d < dmin:
                        h = nh
                        dmin = d

            # Кольцо пройдено: если нашли — стоп
            if i + 1 == next_ring_start:
                if h != UNSET_HEIGHT:
                    break
                next_ring_start += next_ring_iters
                next_ring_iters += 8

            if x == z or (x < 0 and x == -z) or (x > 0 and x == 1 - z):
                dx, dz = -dz, dx
            x += dx
            z += dz

    if h == UNSET_HEIGHT:
        return fy
    return h * ch


# ---------------------------------------------------------------------------
# Триангуляция
# ---------------------------------------------------------------------------

def _triangulate(points: np.ndarray, hull_count: int) -> np.ndarray:
    """Delaunay-триангуляция в XZ; при вырожденном входе — веер по оболочке."""
    try:
        tri = Delaunay(points[:, [0, 2]])
        return tri.simplices.astype(np.int64)
    except QhullError as e:
        log.warn(f"[DetailMesh] Delaunay failed, using fan triangulation: {e}")
        fan = []
        for i in range(1, hull_count - 1):
            a, b, c = points[0], points[i], points[i + 1]
            cross = (b[0] - a[0]) * (c[2] - a[2]) - (c[0] - a[0]) * (b[2] - a[2])
            if cross != 0:
                fan.append((0, i, i + 1))
        return np.array(fan, dtype=np.int64).reshape(-1, 3)


def _orient(points: np.ndarray, tris: np.ndarray, sign: float) -> np.ndarray:
    if len(tris) == 0:
        return tris
    a = points[tris[:, 0]]
    b = points[tris[:, 1]]
    c = points[tris[:, 2]]
    cross = (b[:, 0] - a[:, 0]) * (c[:, 2] - a[:, 2]) - (c[:, 0] - a[:, 0]) * (b[:, 2] - a[:, 2])
    # Знак площади треугольника должен совпадать со знаком обхода полигона
    flip = cross * sign < 0
    tris = tris.copy()
    tris[flip, 1], tris[flip, 2] = tris[flip, 2], tris[flip, 1].copy()
    return tris


def _interpolated_heights(points: np.ndarray, samples: np.ndarray) -> np.ndarray:
    """Высота текущей триангуляции под семплами; NaN вне сетки."""
    tri = Delaunay(points[:, [0, 2]])
    xz = samples[:, [0, 2]]
    simplex = tri.find_simplex(xz)
    heights = np.full(len(samples), np.nan)
    inside = simplex >= 0
    if np.any(inside):
        s = simplex[inside]
        transform = tri.transform[s]
        b = np.einsum("ijk,ik->ij", transform[:, :2], xz[inside] - transform[:, 2])
        bary = np.column_stack([b, 1.0 - b.sum(axis=1)])
        heights[inside] = np.sum(bary * points[tri.simplices[s], 1], axis=1)
    return heights


def _edge_flags(va, vb, poly: np.ndarray) -> int:
    thr_sq = 0.001 * 0.001
    n = len(poly)
    j = n - 1
    for i in range(n):
        if (
            _distance_pt_seg_2d_sq(va[0], va[2], poly[j][0], poly[j][2], poly[i][0], poly[i][2]) < thr_sq
            and _distance_pt_seg_2d_sq(vb[0], vb[2], poly[j][0], poly[j][2], poly[i][0], poly[i][2]) < thr_sq
        ):
            return EDGE_BOUNDARY
        j = i
    return 0


def _tri_flags(points: np.ndarray, tri: Sequence[int], poly: np.ndarray) -> int:
    a, b, c = (points[k] for k in tri)
    return (
        _edge_flags(a, b, poly)
        | (_edge_flags(b, c, poly) << 2)
        | (_edge_flags(c, a, poly) << 4)
    )


# ---------------------------------------------------------------------------
# Один полигон
# ---------------------------------------------------------------------------

def build_poly_detail(
    poly: np.ndarray,
    hp: _HeightPatch,
    cs: float,
    ch: float,
    sample_dist: float,
    sample_max_error: float,
    search_radius: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Детальная подсетка одного полигона.

    Args:
        poly: Вершины полигона относительно bmin в мировых единицах, shape (n, 3).

    Returns:
        (verts, tris): вершины относительно bmin (первые n — вершины полигона)
        и треугольники (a, b, c, flags).
    """
    nin = len(poly)
    verts: List[np.ndarray] = [p.copy() for p in poly]
    hull: List[int] = []

    min_extent = _poly_min_extent(poly)

    if sample_dist > 0:
        j = nin - 1
        for i in range(nin):
            vj = poly[j]
            vi = poly[i]
            swapped = False
            # Рёбра всегда обходятся в одном лексикографическом направлении
            if abs(vj[0] - vi[0]) < 1e-6:
                if vj[2] > vi[2]:
                    vj, vi = vi, vj
                    swapped = True
            elif vj[0] > vi[0]:
                vj, vi = vi, vj
                swapped = True

            delta = vi - vj
            d = math.sqrt(delta[0] * delta[0] + delta[2] * delta[2])
            nn = 1 + int(math.floor(d / sample_dist))
            nn = min(nn, MAX_VERTS_PER_EDGE - 1)
            if len(verts) + nn >= MAX_VERTS:
                nn = max(MAX_VERTS - 1 - len(verts), 1)

            edge = []
            for k in range(nn + 1):
                u = k / nn
                pos = vj + delta * u
                pos = pos.copy()
                pos[1] = _sample_height(hp, pos[0], pos[1], pos[2], cs, ch, search_radius)
                edge.append(pos)

            # Упрощение семплов ребра
            idx = [0, nn]
            k = 0
            max_error_sq = sample_max_error * sample_max_error
            while k < len(idx) - 1:
                a = idx[k]
                b = idx[k + 1]
                max_d = 0.0
                max_i = -1
                for m in range(a + 1, b):
                    dev = _distance_pt_seg_sq(edge[m], edge[a], edge[b])
                    if dev > max_d:
                        max_d = dev
                        max_i = m
                if max_i != -1 and max_d > max_error_sq:
                    idx.insert(k + 1, max_i)
                else:
                    k += 1

            hull.append(j)
            inner = idx[1:-1]
            if swapped:
                inner = inner[::-1]
            for k in inner:
                hull.append(len(verts))
                verts.append(edge[k])

            j = i
    else:
        hull = list(range(nin))

    points = np.array(verts, dtype=np.float64).reshape(-1, 3)
    sign = _poly_area2(poly)

    if sample_dist > 0 and min_extent >= sample_dist * 2:
        bmin = poly.min(axis=0)
        bmax = poly.max(axis=0)
        x0 = int(math.floor(bmin[0] / sample_dist))
        x1 = int(math.ceil(bmax[0] / sample_dist))
        z0 = int(math.floor(bmin[2] / sample_dist))
        z1 = int(math.ceil(bmax[2] / sample_dist))
        mid_y = (bmax[1] + bmin[1]) * 0.5

        samples = []
        for z in range(z0, z1):
            for x in range(x0, x1):
                px = x * sample_dist
                pz = z * sample_dist
                # Не ближе sample_dist / 2 к краю полигона
                if _dist_to_poly(poly, px, pz) > -sample_dist / 2:
                    continue
                samples.append((px, _sample_height(hp, px, mid_y, pz, cs, ch, search_radius), pz))

        if samples:
            samples_arr = np.array(samples, dtype=np.float64)
            added = np.zeros(len(samples_arr), dtype=bool)
            while len(points) < MAX_VERTS:
                try:
                    heights = _interpolated_heights(points, samples_arr)
                except QhullError:
                    break
                error = np.abs(samples_arr[:, 1] - heights)
                error[np.isnan(error) | added] = -1.0
                best = int(np.argmax(error))
                if error[best] <= sample_max_error:
                    break
                added[best] = True
                points = np.vstack([points, samples_arr[best]])

    tris = _orient(points, _triangulate(points, len(hull)), sign)

    out = np.zeros((len(tris), 4), dtype=np.int64)
    for t, tri in enumerate(tris.tolist()):
        out[t, :3] = tri
        out[t, 3] = _tri_flags(points, tri, poly)

    return points, out


def build_poly_mesh_detail(
    mesh: PolyMesh,
    chf: CompactHeightfield,
    sample_dist: float,
    sample_max_error: float,
    max_workers: Optional[int] = None,
) -> PolyMeshDetail:
    """
    Построить детальную сетку высот для всех полигонов.

    Args:
        mesh: Полигональная сетка.
        chf: Компактный heightfield с регионами.
        sample_dist: Шаг семплирования в мировых единицах (0 — без семплов).
        sample_max_error: Допустимая ошибка высоты в мировых единицах.
        max_workers: Размер пула потоков; None или 1 — последовательно.
    """
    cs = mesh.cell_size
    ch = mesh.cell_height
    search_radius = max(1, int(math.ceil(mesh.max_edge_error)))
    columns = chf.span_columns()
    scale = np.array([cs, ch, cs])

    def build_one(i: int) -> Tuple[np.ndarray, np.ndarray]:
        vids = mesh.poly_vertices(i)
        poly = mesh.verts[vids].astype(np.float64) * scale
        hp = _height_patch(chf, mesh, i, columns)
        return build_poly_detail(poly, hp, cs, ch, sample_dist, sample_max_error, search_radius)

    indices = range(mesh.poly_count)
    if max_workers is not None and max_workers > 1 and mesh.poly_count > 1:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="navgen-detail") as pool:
            results = list(pool.map(build_one, indices))
    else:
        results = [build_one(i) for i in indices]

    meshes = np.zeros((mesh.poly_count, 4), dtype=np.int64)
    all_verts = []
    all_tris = []
    vbase = 0
    tbase = 0
    for i, (verts, tris) in enumerate(results):
        meshes[i] = (vbase, len(verts), tbase, len(tris))
        all_verts.append(verts + mesh.bmin)
        all_tris.append(tris)
        vbase += len(verts)
        tbase += len(tris)

    verts = np.vstack(all_verts).astype(np.float32) if all_verts else np.zeros((0, 3), dtype=np.float32)
    tris = np.vstack(all_tris).astype(np.int32) if all_tris else np.zeros((0, 4), dtype=np.int32)
    return PolyMeshDetail(meshes=meshes, verts=verts, tris=tris)
