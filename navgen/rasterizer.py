"""
Растеризация треугольников в heightfield.

Каждый треугольник обрезается по строкам сетки (Z), затем по колонкам (X).
Вертикальный размах обрезанного многоугольника в колонке даёт спан.
"""

from __future__ import annotations

import math
from typing import List, Tuple

import numpy as np

from navgen.heightfield import Heightfield
from navgen.types import NULL_AREA, SPAN_MAX_HEIGHT, WALKABLE_AREA, TriangleMesh


Point = Tuple[float, float, float]


def triangle_normals(mesh: TriangleMesh) -> Tuple[np.ndarray, np.ndarray]:
    """
    Нормали треугольников и их длины до нормализации.

    Returns:
        normals: (M, 3), нулевые для вырожденных треугольников.
        lengths: (M,) длины cross(v1 - v0, v2 - v0).
    """
    v = mesh.vertices
    t = mesh.triangles
    e1 = v[t[:, 1]] - v[t[:, 0]]
    e2 = v[t[:, 2]] - v[t[:, 0]]
    cross = np.cross(e1, e2)
    lengths = np.linalg.norm(cross, axis=1)
    normals = np.zeros_like(cross)
    nonzero = lengths > 0.0
    normals[nonzero] = cross[nonzero] / lengths[nonzero, None]
    return normals, lengths


def mark_walkable_triangles(mesh: TriangleMesh, walkable_slope_angle: float) -> np.ndarray:
    """
    Area id каждого треугольника.

    Треугольник проходим, если normal.y > cos(walkable_slope_angle).
    Крутые треугольники получают NULL_AREA, остальные — переопределение
    из mesh.areas или WALKABLE_AREA.

    Args:
        mesh: Входной меш.
        walkable_slope_angle: Максимальный уклон в градусах.

    Returns:
        Массив area id, shape (M,).
    """
    normals, _ = triangle_normals(mesh)
    threshold = math.cos(math.radians(walkable_slope_angle))

    if mesh.areas is not None:
        areas = mesh.areas.astype(np.int64).copy()
    else:
        areas = np.full(mesh.triangle_count, WALKABLE_AREA, dtype=np.int64)

    areas[normals[:, 1] <= threshold] = NULL_AREA
    return areas


def divide_poly(
    poly: List[Point],
    line: float,
    axis: int,
) -> Tuple[List[Point], List[Point]]:
    """
    Разрезать выпуклый многоугольник прямой coord[axis] = line.

    Returns:
        (below, above): часть с coord <= line и часть с coord >= line.
    """
    below: List[Point] = []
    above: List[Point] = []
    n = len(poly)
    if n == 0:
        return below, above

    d = [line - p[axis] for p in poly]
    j = n - 1
    for i in range(n):
        ina = d[j] >= 0
        inb = d[i] >= 0
        if ina != inb:
            s = d[j] / (d[j] - d[i])
            pj = poly[j]
            pi = poly[i]
            point = (
                pj[0] + (pi[0] - pj[0]) * s,
                pj[1] + (pi[1] - pj[1]) * s,
                pj[2] + (pi[2] - pj[2]) * s,
            )
            below.append(point)
            above.append(point)
        if inb:
            below.append(poly[i])
            if d[i] != 0:
                j = i
                continue
        above.append(poly[i])
        j = i

    return below, above


def rasterize_triangle(
    hf: Heightfield,
    v0: Point,
    v1: Point,
    v2: Point,
    area: int,
    merge_threshold: int,
) -> int:
    """
    Растеризовать один треугольник.

    Returns:
        Количество добавленных спанов.
    """
    bmin = hf.bmin
    bmax = hf.bmax
    cs = hf.cell_size
    ics = 1.0 / cs
    ich = 1.0 / hf.cell_height
    w = hf.width
    h = hf.depth
    by = bmax[1] - bmin[1]

    tri = [tuple(v0), tuple(v1), tuple(v2)]
    tmin = [min(p[k] for p in tri) for k in range(3)]
    tmax = [max(p[k] for p in tri) for k in range(3)]

    # Треугольник вне границ heightfield
    for k in range(3):
        if tmin[k] > bmax[k] or tmax[k] < bmin[k]:
            return 0

    z0 = int((tmin[2] - bmin[2]) * ics)
    z1 = int((tmax[2] - bmin[2]) * ics)
    z0 = min(max(z0, -1), h - 1)
    z1 = min(max(z1, 0), h - 1)

    added = 0
    rest = tri
    for z in range(z0, z1 + 1):
        cz = bmin[2] + z * cs
        row, rest = divide_poly(rest, cz + cs, 2)
        if len(row) < 3 or z < 0:
            continue

        min_x = min(p[0] for p in row)
        max_x = max(p[0] for p in row)
        x0 = int((min_x - bmin[0]) * ics)
        x1 = int((max_x - bmin[0]) * ics)
        if x1 < 0 or x0 >= w:
            continue
        x0 = min(max(x0, -1), w - 1)
        x1 = min(max(x1, 0), w - 1)

        row_rest = row
        for x in range(x0, x1 + 1):
            cx = bmin[0] + x * cs
            cell, row_rest = divide_poly(row_rest, cx + cs, 0)
            if len(cell) < 3 or x < 0:
                continue

            smin = min(p[1] for p in cell) - bmin[1]
            smax = max(p[1] for p in cell) - bmin[1]
            if smax < 0.0 or smin > by:
                continue
            smin = max(smin, 0.0)
            smax = min(smax, by)

            ismin = min(max(int(math.floor(smin * ich)), 0), SPAN_MAX_HEIGHT)
            ismax = min(max(int(math.ceil(smax * ich)), ismin + 1), SPAN_MAX_HEIGHT)

            hf.add_span(x, z, ismin, ismax, area, merge_threshold)
            added += 1

    return added


def rasterize_triangles(
    mesh: TriangleMesh,
    hf: Heightfield,
    walkable_slope_angle: float,
    walkable_climb: int,
) -> int:
    """
    Растеризовать все треугольники меша в heightfield.

    Вырожденные (нулевой площади) треугольники пропускаются.

    Args:
        mesh: Входной меш.
        hf: Heightfield, заполняется на месте.
        walkable_slope_angle: Максимальный уклон в градусах.
        walkable_climb: Порог слияния area при совпадении верхушек спанов.

    Returns:
        Количество растеризованных треугольников.
    """
    _, lengths = triangle_normals(mesh)
    areas = mark_walkable_triangles(mesh, walkable_slope_angle)
    vertices = mesh.vertices.tolist()

    count = 0
    for i, (a, b, c) in enumerate(mesh.triangles.tolist()):
        if lengths[i] <= 0.0:
            continue
        rasterize_triangle(hf, vertices[a], vertices[b], vertices[c], int(areas[i]), walkable_climb)
        count += 1

    return count
