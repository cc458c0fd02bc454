"""
Тесты фильтров спанов.
"""

import unittest

from navgen.config import NavMeshConfig
from navgen.filters import (
    filter_heightfield,
    filter_ledge_spans,
    filter_low_hanging_walkable_obstacles,
    filter_walkable_low_height_spans,
)
from navgen.heightfield import Heightfield
from navgen.types import NULL_AREA, WALKABLE_AREA


def make_heightfield(width: int, depth: int) -> Heightfield:
    return Heightfield(
        width=width,
        depth=depth,
        bmin=(0.0, 0.0, 0.0),
        bmax=(float(width), 100.0, float(depth)),
        cell_size=1.0,
        cell_height=1.0,
    )


def column_areas(hf: Heightfield, x: int, z: int) -> list:
    return [span.area for span in hf.column(x, z)]


class LowHangingObstaclesTest(unittest.TestCase):
    """Тесты для filter_low_hanging_walkable_obstacles."""

    def test_single_level_propagation(self):
        """Низкое препятствие становится проходимым, следующее над ним — нет."""
        hf = make_heightfield(1, 1)
        hf.add_span(0, 0, 0, 2, WALKABLE_AREA, 0)
        hf.add_span(0, 0, 3, 4, NULL_AREA, 0)
        hf.add_span(0, 0, 5, 6, NULL_AREA, 0)

        filter_low_hanging_walkable_obstacles(2, hf)

        self.assertEqual(column_areas(hf, 0, 0), [WALKABLE_AREA, WALKABLE_AREA, NULL_AREA])

    def test_high_obstacle_stays(self):
        hf = make_heightfield(1, 1)
        hf.add_span(0, 0, 0, 2, WALKABLE_AREA, 0)
        hf.add_span(0, 0, 3, 8, NULL_AREA, 0)

        filter_low_hanging_walkable_obstacles(2, hf)

        self.assertEqual(column_areas(hf, 0, 0), [WALKABLE_AREA, NULL_AREA])

    def test_area_is_inherited(self):
        """Препятствие получает area нижнего спана."""
        hf = make_heightfield(1, 1)
        hf.add_span(0, 0, 0, 2, 7, 0)
        hf.add_span(0, 0, 3, 3, NULL_AREA, 0)

        filter_low_hanging_walkable_obstacles(1, hf)

        self.assertEqual(column_areas(hf, 0, 0), [7, 7])


class LedgeFilterTest(unittest.TestCase):
    """Тесты для filter_ledge_spans."""

    def test_isolated_high_column(self):
        """Столбец без доступного соседа по высоте — уступ."""
        hf = make_heightfield(3, 1)
        hf.add_span(0, 0, 0, 1, WALKABLE_AREA, 0)
        hf.add_span(1, 0, 0, 1, WALKABLE_AREA, 0)
        hf.add_span(2, 0, 0, 20, WALKABLE_AREA, 0)

        filter_ledge_spans(2, 1, hf)

        self.assertEqual(column_areas(hf, 0, 0), [WALKABLE_AREA])
        self.assertEqual(column_areas(hf, 1, 0), [WALKABLE_AREA])
        self.assertEqual(column_areas(hf, 2, 0), [NULL_AREA])

    def test_flat_grid_unchanged(self):
        """На ровной сетке уступов нет, край сетки уступом не считается."""
        hf = make_heightfield(3, 3)
        for z in range(3):
            for x in range(3):
                hf.add_span(x, z, 0, 1, WALKABLE_AREA, 0)

        filter_ledge_spans(2, 1, hf)

        self.assertEqual(hf.walkable_span_count(), 9)

    def test_strict_marks_grid_border(self):
        """strict: край сетки — уступ, остаётся только центр."""
        hf = make_heightfield(3, 3)
        for z in range(3):
            for x in range(3):
                hf.add_span(x, z, 0, 1, WALKABLE_AREA, 0)

        filter_ledge_spans(2, 1, hf, strict=True)

        self.assertEqual(hf.walkable_span_count(), 1)
        self.assertEqual(column_areas(hf, 1, 1), [WALKABLE_AREA])

    def test_strict_steep_neighbour_range(self):
        """strict: доступные соседи с разбросом высот больше climb — уступ."""
        hf = make_heightfield(3, 3)
        floors = [
            [2, 2, 2],
            [1, 2, 3],
            [2, 2, 2],
        ]
        for z in range(3):
            for x in range(3):
                hf.add_span(x, z, 0, floors[z][x], WALKABLE_AREA, 0)

        filter_ledge_spans(2, 1, hf, strict=True)

        self.assertEqual(column_areas(hf, 1, 1), [NULL_AREA])

    def test_decision_uses_original_areas(self):
        """Пометка не влияет на решения для соседних спанов в том же проходе."""
        hf = make_heightfield(2, 1)
        hf.add_span(0, 0, 0, 1, WALKABLE_AREA, 0)
        hf.add_span(1, 0, 0, 1, WALKABLE_AREA, 0)

        filter_ledge_spans(2, 1, hf)

        self.assertEqual(hf.walkable_span_count(), 2)


class LowHeightFilterTest(unittest.TestCase):
    """Тесты для filter_walkable_low_height_spans."""

    def test_low_ceiling(self):
        hf = make_heightfield(1, 1)
        hf.add_span(0, 0, 0, 1, WALKABLE_AREA, 0)
        hf.add_span(0, 0, 3, 5, WALKABLE_AREA, 0)

        filter_walkable_low_height_spans(3, hf)

        self.assertEqual(column_areas(hf, 0, 0), [NULL_AREA, WALKABLE_AREA])

    def test_exact_clearance(self):
        """Просвет ровно walkable_height допустим."""
        hf = make_heightfield(1, 1)
        hf.add_span(0, 0, 0, 1, WALKABLE_AREA, 0)
        hf.add_span(0, 0, 4, 5, WALKABLE_AREA, 0)

        filter_walkable_low_height_spans(3, hf)

        self.assertEqual(column_areas(hf, 0, 0), [WALKABLE_AREA, WALKABLE_AREA])


class FilterHeightfieldTest(unittest.TestCase):
    """Тесты для filter_heightfield."""

    def make_low_ceiling(self) -> Heightfield:
        hf = make_heightfield(1, 1)
        hf.add_span(0, 0, 0, 1, WALKABLE_AREA, 0)
        hf.add_span(0, 0, 2, 3, WALKABLE_AREA, 0)
        return hf

    def test_all_disabled(self):
        hf = self.make_low_ceiling()
        config = NavMeshConfig(
            walkable_height=3,
            filter_low_hanging_obstacles=False,
            filter_ledge_spans=False,
            filter_walkable_low_height_spans=False,
        )

        filter_heightfield(config, hf)

        self.assertEqual(column_areas(hf, 0, 0), [WALKABLE_AREA, WALKABLE_AREA])

    def test_low_height_enabled(self):
        hf = self.make_low_ceiling()
        config = NavMeshConfig(walkable_height=3, filter_ledge_spans=False)

        filter_heightfield(config, hf)

        self.assertEqual(column_areas(hf, 0, 0), [NULL_AREA, WALKABLE_AREA])


if __name__ == "__main__":
    unittest.main()
