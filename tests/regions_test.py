"""
Тесты поля расстояний и разбиения на регионы.
"""

import unittest
import numpy as np

from navgen.compact import build_compact_heightfield
from navgen.heightfield import Heightfield
from navgen.regions import (
    Region,
    RegionSet,
    build_distance_field,
    build_regions,
    collect_regions,
    merge_and_filter_regions,
)
from navgen.types import NO_REGION, NULL_AREA, WALKABLE_AREA


def grid_heightfield(width: int, depth: int, area_at=None) -> Heightfield:
    """Плоская сетка; area_at(x, z) задаёт area колонки."""
    hf = Heightfield(
        width=width,
        depth=depth,
        bmin=(0.0, 0.0, 0.0),
        bmax=(float(width), 10.0, float(depth)),
        cell_size=1.0,
        cell_height=1.0,
    )
    for z in range(depth):
        for x in range(width):
            area = area_at(x, z) if area_at else WALKABLE_AREA
            hf.add_span(x, z, 0, 1, area, 0)
    return hf


def region_set(*regions: Region) -> RegionSet:
    result = RegionSet()
    for region in regions:
        result[region.id] = region
    return result


class DistanceFieldTest(unittest.TestCase):
    """Тесты для build_distance_field."""

    def test_flat_square(self):
        chf = build_compact_heightfield(2, 1, grid_heightfield(5, 5))

        max_distance = build_distance_field(chf)

        self.assertEqual(max_distance, 4)
        self.assertEqual(chf.max_distance, 4)
        # Край сетки — граница
        self.assertEqual(chf.dist[chf.column(0, 0)[0]], 0)
        self.assertEqual(chf.dist[chf.column(4, 2)[0]], 0)
        # Первое кольцо не сглаживается, центр сглаживается
        self.assertEqual(chf.dist[chf.column(1, 1)[0]], 2)
        self.assertEqual(chf.dist[chf.column(2, 2)[0]], 2)

    def test_area_change_is_border(self):
        """Переход между area id — граница поля расстояний."""
        chf = build_compact_heightfield(
            2, 1, grid_heightfield(6, 5, lambda x, z: 5 if x >= 3 else WALKABLE_AREA)
        )
        build_distance_field(chf)

        self.assertEqual(chf.dist[chf.column(2, 2)[0]], 0)
        self.assertEqual(chf.dist[chf.column(3, 2)[0]], 0)


class RegionSetTest(unittest.TestCase):
    """Тесты для RegionSet и collect_regions."""

    def test_zero_id_rejected(self):
        regions = RegionSet()
        with self.assertRaises(ValueError):
            regions[NO_REGION] = Region(id=0)

    def test_floors(self):
        """Регионы в одной колонке попадают во floors друг друга."""
        hf = Heightfield(
            width=1, depth=1,
            bmin=(0.0, 0.0, 0.0), bmax=(1.0, 10.0, 1.0),
            cell_size=1.0, cell_height=1.0,
        )
        hf.add_span(0, 0, 0, 1, WALKABLE_AREA, 0)
        hf.add_span(0, 0, 5, 6, WALKABLE_AREA, 0)
        chf = build_compact_heightfield(2, 1, hf)
        chf.regions = np.array([1, 2], dtype=np.int32)

        regions = collect_regions(chf)

        self.assertEqual(regions[1].floors, {2})
        self.assertEqual(regions[2].floors, {1})
        self.assertEqual(regions[1].neighbors, {})


class MergeRegionsTest(unittest.TestCase):
    """Тесты для merge_and_filter_regions."""

    def test_merge_into_longest_border(self):
        regions = region_set(
            Region(id=1, span_count=10, area=WALKABLE_AREA, neighbors={2: 3, 3: 5}),
            Region(id=2, span_count=100, area=WALKABLE_AREA, neighbors={1: 3}),
            Region(id=3, span_count=50, area=WALKABLE_AREA, neighbors={1: 5}),
        )

        mapping = merge_and_filter_regions(regions, 15, 200)

        self.assertEqual(mapping, {1: 2, 2: 1, 3: 2})

    def test_border_tie_prefers_lower_id(self):
        regions = region_set(
            Region(id=1, span_count=10, area=WALKABLE_AREA, neighbors={2: 4, 3: 4}),
            Region(id=2, span_count=100, area=WALKABLE_AREA, neighbors={1: 4}),
            Region(id=3, span_count=50, area=WALKABLE_AREA, neighbors={1: 4}),
        )

        mapping = merge_and_filter_regions(regions, 15, 200)

        self.assertEqual(mapping, {1: 1, 2: 1, 3: 2})

    def test_large_regions_are_not_merged(self):
        """Регионы не меньше min_region_area остаются как есть."""
        regions = region_set(
            Region(id=1, span_count=10, area=WALKABLE_AREA, neighbors={2: 3}),
            Region(id=2, span_count=100, area=WALKABLE_AREA, neighbors={1: 3}),
        )

        mapping = merge_and_filter_regions(regions, 5, 200)

        self.assertEqual(mapping, {1: 1, 2: 2})

    def test_merge_limited_by_merge_region_area(self):
        """Слияние, превышающее merge_region_area, запрещено; регион удаляется."""
        regions = region_set(
            Region(id=1, span_count=5, area=WALKABLE_AREA, neighbors={2: 4}),
            Region(id=2, span_count=500, area=WALKABLE_AREA, neighbors={1: 4}),
        )

        mapping = merge_and_filter_regions(regions, 8, 20)

        self.assertEqual(mapping, {1: NO_REGION, 2: 1})

    def test_shared_floor_blocks_merge(self):
        """Регионы с общей колонкой не сливаются; маленький регион удаляется."""
        regions = region_set(
            Region(id=1, span_count=10, area=WALKABLE_AREA, neighbors={2: 3, 3: 5}, floors={2, 3}),
            Region(id=2, span_count=100, area=WALKABLE_AREA, neighbors={1: 3}, floors={1}),
            Region(id=3, span_count=50, area=WALKABLE_AREA, neighbors={1: 5}, floors={1}),
        )

        mapping = merge_and_filter_regions(regions, 15, 200)

        self.assertEqual(mapping, {1: NO_REGION, 2: 1, 3: 2})

    def test_different_area_blocks_merge(self):
        regions = region_set(
            Region(id=1, span_count=10, area=5, neighbors={2: 3}),
            Region(id=2, span_count=100, area=WALKABLE_AREA, neighbors={1: 3}),
        )

        mapping = merge_and_filter_regions(regions, 15, 200)

        self.assertEqual(mapping, {1: NO_REGION, 2: 1})

    def test_chain_merge(self):
        """Слитый регион продолжает сливаться, пока меньше min_region_area."""
        regions = region_set(
            Region(id=1, span_count=5, area=WALKABLE_AREA, neighbors={2: 2}),
            Region(id=2, span_count=6, area=WALKABLE_AREA, neighbors={1: 2, 3: 1}),
            Region(id=3, span_count=8, area=WALKABLE_AREA, neighbors={2: 1}),
        )

        mapping = merge_and_filter_regions(regions, 15, 30)

        self.assertEqual(mapping, {1: 1, 2: 1, 3: 1})


class BuildRegionsTest(unittest.TestCase):
    """Тесты для build_regions."""

    def build(self, hf, min_area=1, merge_area=10000):
        chf = build_compact_heightfield(2, 1, hf)
        build_distance_field(chf)
        regions = build_regions(chf, min_area, merge_area)
        return chf, regions

    def test_flat_grid_single_region(self):
        chf, regions = self.build(grid_heightfield(20, 20), min_area=400)

        self.assertEqual(len(regions), 1)
        self.assertEqual(chf.max_region, 1)
        self.assertTrue(np.all(chf.regions == 1))
        self.assertEqual(regions[1].span_count, 400)

    def test_disconnected_parts(self):
        """Несвязанные части — разные регионы без смежности."""
        hf = grid_heightfield(11, 5, lambda x, z: NULL_AREA if x == 5 else WALKABLE_AREA)

        chf, regions = self.build(hf, min_area=25)

        self.assertEqual(sorted(regions), [1, 2])
        for region in regions.values():
            self.assertEqual(region.span_count, 25)
            self.assertEqual(region.neighbors, {})
        self.assertTrue(np.all(chf.regions != NO_REGION))

    def test_areas_do_not_mix(self):
        hf = grid_heightfield(6, 3, lambda x, z: 5 if x >= 3 else WALKABLE_AREA)

        chf, regions = self.build(hf, min_area=9)

        self.assertEqual(len(regions), 2)
        self.assertEqual({r.area for r in regions.values()}, {5, WALKABLE_AREA})
        for rid, region in regions.items():
            other = 3 - rid
            self.assertEqual(region.neighbors, {other: 3})

    def test_small_regions_discarded(self):
        hf = grid_heightfield(11, 5, lambda x, z: NULL_AREA if x == 5 else WALKABLE_AREA)

        chf, regions = self.build(hf, min_area=30)

        self.assertEqual(len(regions), 0)
        self.assertEqual(chf.max_region, 0)
        self.assertTrue(np.all(chf.regions == NO_REGION))

    def test_deterministic(self):
        hf_a = grid_heightfield(12, 9, lambda x, z: NULL_AREA if (x, z) in ((4, 4), (5, 4)) else WALKABLE_AREA)
        hf_b = grid_heightfield(12, 9, lambda x, z: NULL_AREA if (x, z) in ((4, 4), (5, 4)) else WALKABLE_AREA)

        chf_a, _ = self.build(hf_a, merge_area=0)
        chf_b, _ = self.build(hf_b, merge_area=0)

        self.assertEqual(chf_a.regions.tobytes(), chf_b.regions.tobytes())

    def test_connectivity_has_no_zero_region(self):
        """Id 0 не встречается ни как регион, ни как сосед."""
        hf = grid_heightfield(
            12, 9,
            lambda x, z: NULL_AREA if (x, z) in ((4, 4), (5, 4)) else (5 if x >= 8 else WALKABLE_AREA),
        )

        _, regions = self.build(hf)
        graph = regions.connectivity()

        self.assertGreaterEqual(len(graph), 2)
        self.assertNotIn(NO_REGION, graph)
        for rid, neighbours in graph.items():
            self.assertNotIn(NO_REGION, neighbours)
            for nid, length in neighbours.items():
                self.assertIn(nid, graph)
                self.assertEqual(graph[nid][rid], length)


if __name__ == "__main__":
    unittest.main()
