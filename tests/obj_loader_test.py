"""
Тесты загрузчика OBJ и командной строки.
"""

import os
import tempfile
import unittest

from navgen.__main__ import main
from navgen.errors import GeometryError
from navgen.loaders import load_obj
from navgen.persistence import NavMeshPersistence


PLANE_OBJ = """\
# plane 10 x 10
v 0 0 0
v 10 0 0
v 10 0 10
v 0 0 10
f 1 4 3 2
"""


class ObjLoaderTest(unittest.TestCase):
    """Тесты для load_obj."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, text: str) -> str:
        path = os.path.join(self.tmp.name, "mesh.obj")
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path

    def test_quad_is_fan_triangulated(self):
        mesh = load_obj(self.write(PLANE_OBJ))

        self.assertEqual(mesh.vertex_count, 4)
        self.assertEqual(mesh.triangles.tolist(), [[0, 3, 2], [0, 2, 1]])
        mesh.validate()

    def test_face_formats(self):
        """Индексы вида v/vt/vn и v//vn."""
        text = (
            "v 0 0 0\nv 1 0 0\nv 0 0 1\n"
            "vt 0 0\nvn 0 1 0\n"
            "f 1/1/1 3/1/1 2/1/1\n"
            "f 1//1 3//1 2//1\n"
        )
        mesh = load_obj(self.write(text))
        self.assertEqual(mesh.triangles.tolist(), [[0, 2, 1], [0, 2, 1]])

    def test_negative_indices(self):
        text = "v 0 0 0\nv 1 0 0\nv 0 0 1\nf -3 -1 -2\n"
        mesh = load_obj(self.write(text))
        self.assertEqual(mesh.triangles.tolist(), [[0, 2, 1]])

    def test_zero_index(self):
        text = "v 0 0 0\nv 1 0 0\nv 0 0 1\nf 0 1 2\n"
        with self.assertRaises(GeometryError):
            load_obj(self.write(text))

    def test_no_faces(self):
        mesh = load_obj(self.write("v 0 0 0\n"))
        self.assertEqual(mesh.triangle_count, 0)
        with self.assertRaises(GeometryError):
            mesh.validate()


class CommandLineTest(unittest.TestCase):
    """Тесты для python -m navgen."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.obj_path = os.path.join(self.tmp.name, "plane.obj")
        with open(self.obj_path, "w", encoding="utf-8") as f:
            f.write(PLANE_OBJ)

    def tearDown(self):
        self.tmp.cleanup()

    def test_build_to_file(self):
        out = os.path.join(self.tmp.name, "plane.navmesh")

        code = main([self.obj_path, "-o", out])

        self.assertEqual(code, 0)
        info = NavMeshPersistence.get_info(out)
        self.assertEqual(info["name"], "plane")
        self.assertGreater(info["polygon_count"], 0)

    def test_default_output_path(self):
        code = main([self.obj_path, "-j", "2"])

        self.assertEqual(code, 0)
        self.assertTrue(os.path.exists(os.path.join(self.tmp.name, "plane.navmesh")))

    def test_missing_input(self):
        code = main([os.path.join(self.tmp.name, "missing.obj")])
        self.assertEqual(code, 1)

    def test_invalid_config(self):
        config_path = os.path.join(self.tmp.name, "bad.json")
        with open(config_path, "w", encoding="utf-8") as f:
            f.write('{"cell_size": 0}')

        code = main([self.obj_path, "--config", config_path])

        self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main()
