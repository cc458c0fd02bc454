"""
Тесты конфигурации построения.
"""

import json
import os
import tempfile
import unittest

from navgen.config import (
    AgentSettings,
    BuildContoursFlags,
    NavMeshConfig,
    load_config,
    save_config,
)
from navgen.errors import ConfigError
from navgen.types import ConvexVolume


class NavMeshConfigTest(unittest.TestCase):
    """Тесты для NavMeshConfig."""

    def test_defaults_are_valid(self):
        """Конфигурация по умолчанию проходит проверку."""
        NavMeshConfig().validate()

    def test_non_positive_cell_size(self):
        """Нулевой cell_size отвергается."""
        with self.assertRaises(ConfigError):
            NavMeshConfig(cell_size=0.0).validate()

    def test_non_positive_cell_height(self):
        with self.assertRaises(ConfigError):
            NavMeshConfig(cell_height=-0.1).validate()

    def test_too_few_verts_per_poly(self):
        """max_verts_per_poly < 3 отвергается."""
        with self.assertRaises(ConfigError):
            NavMeshConfig(max_verts_per_poly=2).validate()

    def test_slope_out_of_range(self):
        with self.assertRaises(ConfigError):
            NavMeshConfig(walkable_slope_angle=90.0).validate()
        with self.assertRaises(ConfigError):
            NavMeshConfig(walkable_slope_angle=-1.0).validate()

    def test_negative_voxel_quantities(self):
        """Отрицательные величины в вокселях отвергаются."""
        for name in ("walkable_climb", "walkable_radius", "max_edge_len",
                     "min_region_area", "merge_region_area"):
            with self.subTest(name=name):
                with self.assertRaises(ConfigError):
                    NavMeshConfig(**{name: -1}).validate()

    def test_negative_detail_parameters(self):
        with self.assertRaises(ConfigError):
            NavMeshConfig(detail_sample_dist=-1.0).validate()
        with self.assertRaises(ConfigError):
            NavMeshConfig(detail_sample_max_error=-0.5).validate()

    def test_bounds_must_be_paired(self):
        with self.assertRaises(ConfigError):
            NavMeshConfig(bmin=(0.0, 0.0, 0.0)).validate()

    def test_inverted_bounds(self):
        with self.assertRaises(ConfigError):
            NavMeshConfig(bmin=(0.0, 0.0, 0.0), bmax=(-1.0, 1.0, 1.0)).validate()

    def test_dict_roundtrip(self):
        """to_dict / from_dict сохраняют все поля."""
        config = NavMeshConfig(
            cell_size=0.5,
            walkable_radius=3,
            strict_ledges=True,
            contour_flags=BuildContoursFlags.TESSELLATE_WALL_EDGES | BuildContoursFlags.TESSELLATE_AREA_EDGES,
            area_volumes=[
                ConvexVolume(
                    vertices=[(0, 0, 0), (1, 0, 0), (1, 0, 1)],
                    hmin=-1.0,
                    hmax=2.0,
                    area=7,
                ),
            ],
            bmin=(0.0, 0.0, 0.0),
            bmax=(10.0, 5.0, 10.0),
        )

        data = config.to_dict()
        json.dumps(data)
        restored = NavMeshConfig.from_dict(data)

        self.assertEqual(restored.cell_size, 0.5)
        self.assertEqual(restored.walkable_radius, 3)
        self.assertTrue(restored.strict_ledges)
        self.assertEqual(int(restored.contour_flags), 3)
        self.assertEqual(len(restored.area_volumes), 1)
        self.assertEqual(restored.area_volumes[0].area, 7)
        self.assertEqual(restored.bmax, (10.0, 5.0, 10.0))

    def test_unknown_option(self):
        """Неизвестный ключ — ошибка конфигурации."""
        with self.assertRaises(ConfigError):
            NavMeshConfig.from_dict({"cell_sise": 0.3})


class AgentSettingsTest(unittest.TestCase):
    """Тесты для AgentSettings."""

    def test_to_config(self):
        """Перевод мировых единиц агента в воксели."""
        agent = AgentSettings(
            cell_size=0.25,
            cell_height=0.125,
            height=2.0,
            radius=0.5,
            max_climb=0.5,
            max_slope=40.0,
            region_min_size=8,
            region_merge_size=20,
            edge_max_len=12.0,
            edge_max_error=1.3,
            verts_per_poly=6,
            detail_sample_dist=6.0,
            detail_sample_max_error=1.0,
        )
        config = agent.to_config()

        self.assertEqual(config.walkable_height, 16)
        self.assertEqual(config.walkable_climb, 4)
        self.assertEqual(config.walkable_radius, 2)
        self.assertEqual(config.max_edge_len, 48)
        self.assertEqual(config.min_region_area, 64)
        self.assertEqual(config.merge_region_area, 400)
        self.assertEqual(config.walkable_slope_angle, 40.0)
        self.assertAlmostEqual(config.detail_sample_dist, 1.5)
        self.assertAlmostEqual(config.detail_sample_max_error, 0.125)
        config.validate()

    def test_small_sample_dist_disables_sampling(self):
        config = AgentSettings(detail_sample_dist=0.5).to_config()
        self.assertEqual(config.detail_sample_dist, 0.0)

    def test_dict_roundtrip(self):
        agent = AgentSettings(name="Dog", height=0.75, radius=0.25)
        restored = AgentSettings.from_dict(agent.to_dict())
        self.assertEqual(restored.name, "Dog")
        self.assertEqual(restored.height, 0.75)
        self.assertEqual(restored.radius, 0.25)


class ConfigFileTest(unittest.TestCase):
    """Тесты для load_config / save_config."""

    def test_save_load(self):
        config = NavMeshConfig(cell_size=0.5, max_verts_per_poly=4)

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "build.json")
            save_config(config, path)
            loaded = load_config(path)

        self.assertEqual(loaded.cell_size, 0.5)
        self.assertEqual(loaded.max_verts_per_poly, 4)

    def test_load_agent_section(self):
        """Секция agent переводится в конфигурацию, остальные ключи переопределяют."""
        data = {
            "agent": {"cell_size": 0.25, "cell_height": 0.125, "radius": 0.5},
            "max_workers": 2,
        }

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "agent.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f)
            loaded = load_config(path)

        self.assertEqual(loaded.cell_size, 0.25)
        self.assertEqual(loaded.walkable_radius, 2)
        self.assertEqual(loaded.max_workers, 2)


if __name__ == "__main__":
    unittest.main()
