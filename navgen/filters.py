"""
Фильтры спанов heightfield.

Все фильтры работают на месте и меняют только area спанов.
Порядок применения: низкие препятствия, уступы, низкий потолок.
"""

from __future__ import annotations

from navgen.config import NavMeshConfig
from navgen.heightfield import Heightfield
from navgen.types import DIR_OFFSET_X, DIR_OFFSET_Z, NULL_AREA, SPAN_MAX_HEIGHT


def filter_low_hanging_walkable_obstacles(walkable_climb: int, hf: Heightfield) -> None:
    """
    Непроходимый спан, верх которого не выше walkable_climb над проходимым
    спаном прямо под ним, получает area нижнего спана.

    Распространяется только на один уровень: решение принимается по исходной
    проходимости нижнего спана.
    """
    for spans in hf.columns:
        previous_walkable = False
        previous_area = NULL_AREA
        previous_smax = 0
        for span in spans:
            walkable = span.area != NULL_AREA
            if not walkable and previous_walkable:
                if abs(span.smax - previous_smax) <= walkable_climb:
                    span.area = previous_area
            previous_walkable = walkable
            previous_area = span.area
            previous_smax = span.smax


def _span_top(spans, i: int) -> int:
    return spans[i + 1].smin if i + 1 < len(spans) else SPAN_MAX_HEIGHT


def filter_ledge_spans(
    walkable_height: int,
    walkable_climb: int,
    hf: Heightfield,
    strict: bool = False,
) -> None:
    """
    Пометить уступы непроходимыми.

    По умолчанию спан становится непроходимым, если ни в одном из четырёх
    соседних столбцов нет доступного пола (просвет >= walkable_height)
    в пределах walkable_climb от его пола.

    strict=True: спан непроходим, если с любой стороны (включая край сетки)
    перепад глубже walkable_climb, или доступные полы соседей различаются
    по высоте больше чем на walkable_climb.
    """
    w = hf.width
    d = hf.depth
    marked = []

    for z in range(d):
        for x in range(w):
            spans = hf.columns[x + z * w]
            for i, span in enumerate(spans):
                if span.area == NULL_AREA:
                    continue

                bot = span.smax
                top = _span_top(spans, i)

                if strict:
                    if _is_strict_ledge(hf, x, z, bot, top, walkable_height, walkable_climb):
                        marked.append(span)
                elif not _has_accessible_neighbour(hf, x, z, bot, top, walkable_height, walkable_climb):
                    marked.append(span)

    for span in marked:
        span.area = NULL_AREA


def _has_accessible_neighbour(hf, x, z, bot, top, walkable_height, walkable_climb) -> bool:
    for direction in range(4):
        nx = x + DIR_OFFSET_X[direction]
        nz = z + DIR_OFFSET_Z[direction]
        if not hf.in_bounds(nx, nz):
            continue
        neighbours = hf.columns[nx + nz * hf.width]
        for j, ns in enumerate(neighbours):
            nbot = ns.smax
            ntop = _span_top(neighbours, j)
            if min(top, ntop) - max(bot, nbot) >= walkable_height and abs(nbot - bot) <= walkable_climb:
                return True
    return False


def _is_strict_ledge(hf, x, z, bot, top, walkable_height, walkable_climb) -> bool:
    min_neighbour_height = SPAN_MAX_HEIGHT
    accessible_min = bot
    accessible_max = bot

    for direction in range(4):
        nx = x + DIR_OFFSET_X[direction]
        nz = z + DIR_OFFSET_Z[direction]
        if not hf.in_bounds(nx, nz):
            min_neighbour_height = min(min_neighbour_height, -walkable_climb - bot)
            continue

        neighbours = hf.columns[nx + nz * hf.width]

        # Пол под самым нижним спаном соседа
        nbot = -walkable_climb
        ntop = neighbours[0].smin if neighbours else SPAN_MAX_HEIGHT
        if min(top, ntop) - max(bot, nbot) > walkable_height:
            min_neighbour_height = min(min_neighbour_height, nbot - bot)

        for j, ns in enumerate(neighbours):
            nbot = ns.smax
            ntop = _span_top(neighbours, j)
            if min(top, ntop) - max(bot, nbot) > walkable_height:
                min_neighbour_height = min(min_neighbour_height, nbot - bot)
                if abs(nbot - bot) <= walkable_climb:
                    accessible_min = min(accessible_min, nbot)
                    accessible_max = max(accessible_max, nbot)

    if min_neighbour_height < -walkable_climb:
        return True
    return accessible_max - accessible_min > walkable_climb


def filter_walkable_low_height_spans(walkable_height: int, hf: Heightfield) -> None:
    """Спаны с просветом до следующего спана меньше walkable_height становятся непроходимыми."""
    for spans in hf.columns:
        for i, span in enumerate(spans):
            if _span_top(spans, i) - span.smax < walkable_height:
                span.area = NULL_AREA


def filter_heightfield(config: NavMeshConfig, hf: Heightfield) -> None:
    """Применить включённые в конфигурации фильтры в каноническом порядке."""
    if config.filter_low_hanging_obstacles:
        filter_low_hanging_walkable_obstacles(config.walkable_climb, hf)
    if config.filter_ledge_spans:
        filter_ledge_spans(
            config.walkable_height,
            config.walkable_climb,
            hf,
            strict=config.strict_ledges,
        )
    if config.filter_walkable_low_height_spans:
        filter_walkable_low_height_spans(config.walkable_height, hf)
