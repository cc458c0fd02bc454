"""
Поле расстояний и разбиение на регионы водоразделом (watershed).

Алгоритм:
1. Поле расстояний до границы (chamfer 2/3) со сглаживанием 3×3
2. Уровни от максимума к нулю с шагом 2: рост существующих регионов,
   затем заливка новых регионов из оставшихся клеток
3. Слияние маленьких регионов с соседями (не больше merge_region_area),
   отбрасывание несливаемых
4. Перенумерация регионов в 1..n
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Set

import numpy as np

from navgen import log
from navgen.compact import CompactHeightfield, chamfer_distance
from navgen.types import NO_REGION, NOT_CONNECTED, NULL_AREA, SPAN_MAX_HEIGHT, validate_region_id


EXPAND_ITERATIONS = 8
BLUR_THRESHOLD = 2


@dataclass
class Region:
    """Регион и его связность с соседями."""

    id: int
    span_count: int = 0
    area: int = NULL_AREA
    neighbors: Dict[int, int] = field(default_factory=dict)
    """Соседний регион -> длина общей границы в рёбрах ячеек. Ключа 0 нет."""
    floors: Set[int] = field(default_factory=set)
    """Регионы, делящие с этим хотя бы одну колонку."""


class RegionSet(dict):
    """Регионы по id. Id 0 (NO_REGION) не может быть ключом."""

    def __setitem__(self, key: int, value: Region) -> None:
        if validate_region_id(key) == NO_REGION:
            raise ValueError("region id 0 is reserved for spans without region")
        super().__setitem__(key, value)

    def connectivity(self) -> Dict[int, Dict[int, int]]:
        """Граф смежности: region -> {neighbour: border length}."""
        return {rid: dict(region.neighbors) for rid, region in self.items()}


def build_distance_field(chf: CompactHeightfield) -> int:
    """
    Посчитать расстояние до границы для каждого спана.

    Граница — спан, у которого меньше четырёх связей с соседями той же area.
    После chamfer-прохода поле сглаживается box-фильтром 3×3 (спаны
    с расстоянием <= 2 не меняются).

    Returns:
        Максимальное расстояние до сглаживания.
    """
    areas = chf.areas.tolist()
    con = chf.con.tolist()
    n = chf.span_count
    dist = [SPAN_MAX_HEIGHT] * n

    for i in range(n):
        same = 0
        for a in con[i]:
            if a != NOT_CONNECTED and areas[a] == areas[i]:
                same += 1
        if same != 4:
            dist[i] = 0

    chamfer_distance(chf, dist)
    max_distance = max(dist) if dist else 0

    chf.dist = np.array(_box_blur(con, dist, BLUR_THRESHOLD), dtype=np.int32)
    chf.max_distance = int(max_distance)
    return chf.max_distance


def _box_blur(con: List[List[int]], src: List[int], threshold: int) -> List[int]:
    dst = list(src)
    for i, cd in enumerate(src):
        if cd <= threshold:
            continue
        d = cd
        for direction in range(4):
            a = con[i][direction]
            if a != NOT_CONNECTED:
                d += src[a]
                aa = con[a][(direction + 1) & 3]
                d += src[aa] if aa != NOT_CONNECTED else cd
            else:
                d += cd * 2
        dst[i] = (d + 5) // 9
    return dst


class _Watershed:
    """Состояние заливки: src_reg / src_dist по спанам."""

    def __init__(self, chf: CompactHeightfield) -> None:
        self.chf = chf
        self.con = chf.con.tolist()
        self.areas = chf.areas.tolist()
        self.dist = chf.dist.tolist()
        n = chf.span_count
        self.src_reg = [NO_REGION] * n
        self.src_dist = [0] * n

    def pending(self, level: int) -> List[int]:
        areas = self.areas
        reg = self.src_reg
        dist = self.dist
        return [
            i for i in range(len(reg))
            if areas[i] != NULL_AREA and reg[i] == NO_REGION and dist[i] >= level
        ]

    def expand(self, stack: List[int], level: int, max_iter: int) -> None:
        """
        Синхронно нарастить существующие регионы на клетки stack.

        Клетка забирает регион соседа той же area с наименьшей дистанцией заливки.
        На уровне 0 итерации продолжаются, пока есть прогресс.
        """
        con = self.con
        areas = self.areas
        reg = self.src_reg
        sdist = self.src_dist

        entries = [i for i in stack if reg[i] == NO_REGION]
        iteration = 0
        while entries:
            dirty = []
            remaining = []
            for i in entries:
                r = NO_REGION
                d2 = SPAN_MAX_HEIGHT
                area = areas[i]
                for a in con[i]:
                    if a == NOT_CONNECTED or areas[a] != area:
                        continue
                    if reg[a] != NO_REGION and sdist[a] + 2 < d2:
                        r = reg[a]
                        d2 = sdist[a] + 2
                if r != NO_REGION:
                    dirty.append((i, r, d2))
                else:
                    remaining.append(i)

            for i, r, d2 in dirty:
                reg[i] = r
                sdist[i] = d2

            if not dirty:
                break
            entries = remaining

            if level > 0:
                iteration += 1
                if iteration >= max_iter:
                    break

    def flood(self, start: int, level: int, region: int) -> bool:
        """
        Залить новый регион от start по клеткам с dist >= level - 2.

        Клетка, касающаяся другого региона (включая диагональ), не занимается.

        Returns:
            True, если регион получил хотя бы одну клетку.
        """
        con = self.con
        areas = self.areas
        reg = self.src_reg
        sdist = self.src_dist
        dist = self.dist

        area = areas[start]
        lev = level - 2 if level >= 2 else 0

        reg[start] = region
        sdist[start] = 0
        stack = [start]
        count = 0

        while stack:
            ci = stack.pop()

            other = NO_REGION
            for direction in range(4):
                a = con[ci][direction]
                if a == NOT_CONNECTED or areas[a] != area:
                    continue
                nr = reg[a]
                if nr != NO_REGION and nr != region:
                    other = nr
                    break
                a2 = con[a][(direction + 1) & 3]
                if a2 == NOT_CONNECTED or areas[a2] != area:
                    continue
                nr2 = reg[a2]
                if nr2 != NO_REGION and nr2 != region:
                    other = nr2
                    break

            if other != NO_REGION:
                reg[ci] = NO_REGION
                continue

            count += 1
            for a in con[ci]:
                if a == NOT_CONNECTED or areas[a] != area:
                    continue
                if dist[a] >= lev and reg[a] == NO_REGION:
                    reg[a] = region
                    sdist[a] = 0
                    stack.append(a)

        return count > 0


def watershed(chf: CompactHeightfield) -> int:
    """
    Разметить chf.regions водоразделом по полю расстояний.

    Returns:
        Количество созданных регионов (до слияния).
    """
    ws = _Watershed(chf)
    region_id = 1
    level = (chf.max_distance + 1) & ~1

    while level > 0:
        level = level - 2 if level >= 2 else 0

        stack = ws.pending(level)
        ws.expand(stack, level, EXPAND_ITERATIONS)

        for i in stack:
            if ws.src_reg[i] == NO_REGION and ws.flood(i, level, region_id):
                region_id += 1

    # Дорастить всё, что осталось
    ws.expand(ws.pending(0), 0, EXPAND_ITERATIONS * 8)

    chf.regions = np.array(ws.src_reg, dtype=np.int32)
    chf.max_region = region_id - 1
    return chf.max_region


def collect_regions(chf: CompactHeightfield) -> RegionSet:
    """Собрать статистику и связность регионов по chf.regions."""
    regions = RegionSet()
    reg = chf.regions.tolist()
    areas = chf.areas.tolist()
    con = chf.con.tolist()

    for _, _, span_range in chf.cells():
        column_regions = []
        for i in span_range:
            r = reg[i]
            if r == NO_REGION:
                continue
            region = regions.get(r)
            if region is None:
                region = Region(id=r, area=areas[i])
                regions[r] = region
            region.span_count += 1
            column_regions.append(r)

            for a in con[i]:
                nr = reg[a] if a != NOT_CONNECTED else NO_REGION
                if nr != NO_REGION and nr != r:
                    region.neighbors[nr] = region.neighbors.get(nr, 0) + 1

        for r in column_regions:
            for other in column_regions:
                if other != r:
                    regions[r].floors.add(other)

    return regions


def _can_merge(a: Region, b: Region) -> bool:
    return a.area == b.area and b.id not in a.floors


def merge_and_filter_regions(
    regions: RegionSet,
    min_region_area: int,
    merge_region_area: int,
) -> Dict[int, int]:
    """
    Слить маленькие регионы и отбросить крошечные.

    Регион с span_count < min_region_area (сначала самые маленькие, при
    равенстве — меньший id) сливается с совместимым соседом (та же area,
    нет общих колонок), у которого самая длинная общая граница; при равенстве
    выбирается меньший id. Слияние допускается, только если суммарный размер
    не превышает merge_region_area. Регионы, оставшиеся меньше
    min_region_area, удаляются.

    Returns:
        Отображение старый id -> итоговый id (0 для удалённых), итоговые id — 1..n.
    """
    owner = {rid: rid for rid in regions}
    live: Dict[int, Region] = {
        rid: Region(
            id=rid,
            span_count=r.span_count,
            area=r.area,
            neighbors=dict(r.neighbors),
            floors=set(r.floors),
        )
        for rid, r in regions.items()
    }

    while True:
        target_pair = None
        for r in sorted(live.values(), key=lambda reg: (reg.span_count, reg.id)):
            if r.span_count >= min_region_area:
                break
            best = None
            best_len = -1
            for nid in sorted(r.neighbors):
                other = live[nid]
                if not _can_merge(r, other):
                    continue
                length = r.neighbors[nid]
                if length > best_len:
                    best = nid
                    best_len = length
            if best is not None and r.span_count + live[best].span_count <= merge_region_area:
                target_pair = (r.id, best)
                break

        if target_pair is None:
            break
        _merge_into(live, owner, *target_pair)

    removed = [rid for rid, r in live.items() if r.span_count < min_region_area]
    for rid in removed:
        log.debug(f"[Regions] Discarding region {rid} with {live[rid].span_count} spans")
        del live[rid]

    final = {rid: new_id for new_id, rid in enumerate(sorted(live), start=1)}
    return {rid: final.get(_find(owner, rid), NO_REGION) for rid in regions}


def _find(owner: Dict[int, int], rid: int) -> int:
    while owner[rid] != rid:
        rid = owner[rid]
    return rid


def _merge_into(live: Dict[int, Region], owner: Dict[int, int], src_id: int, dst_id: int) -> None:
    src = live.pop(src_id)
    dst = live[dst_id]
    owner[src_id] = dst_id

    dst.span_count += src.span_count
    dst.neighbors.pop(src_id, None)

    for nid, length in src.neighbors.items():
        if nid == dst_id:
            continue
        dst.neighbors[nid] = dst.neighbors.get(nid, 0) + length
        neighbour = live[nid]
        moved = neighbour.neighbors.pop(src_id, 0)
        neighbour.neighbors[dst_id] = neighbour.neighbors.get(dst_id, 0) + moved

    for fid in src.floors:
        if fid == dst_id:
            continue
        dst.floors.add(fid)
        floor = live[fid]
        floor.floors.discard(src_id)
        floor.floors.add(dst_id)


def build_regions(
    chf: CompactHeightfield,
    min_region_area: int,
    merge_region_area: int,
) -> RegionSet:
    """
    Разбить проходимые спаны на регионы.

    Требует предварительного build_distance_field(chf). Пишет chf.regions
    и chf.max_region.

    Returns:
        RegionSet с итоговыми регионами 1..n.
    """
    created = watershed(chf)

    raw = collect_regions(chf)
    mapping = merge_and_filter_regions(raw, min_region_area, merge_region_area)

    lookup = np.zeros(created + 1, dtype=np.int32)
    for old, new in mapping.items():
        lookup[old] = new
    chf.regions = lookup[chf.regions]

    regions = collect_regions(chf)
    chf.max_region = len(regions)

    log.debug(
        f"[Regions] watershed created {created} regions, {len(regions)} after merge and filter"
    )
    return regions
