# navgen/loaders/obj_loader.py
"""Wavefront OBJ loader producing TriangleMesh input geometry."""

from pathlib import Path

import numpy as np

from navgen.errors import GeometryError
from navgen.types import TriangleMesh


def load_obj(path) -> TriangleMesh:
    """
    Load OBJ file as a single indexed triangle mesh.

    Only positions and faces are read; polygons are fan-triangulated.
    Negative (relative) indices are supported.

    Raises:
        GeometryError: On malformed face indices.
    """
    path = Path(path)

    positions = []  # v
    triangles = []  # f

    with open(path, "r", encoding="utf-8", errors="ignore") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            parts = line.split()
            cmd = parts[0]

            if cmd == "v" and len(parts) >= 4:
                positions.append((float(parts[1]), float(parts[2]), float(parts[3])))

            elif cmd == "f" and len(parts) >= 4:
                # Format: v, v/vt, v/vt/vn, v//vn
                face = []
                for vert in parts[1:]:
                    index = int(vert.split("/")[0])
                    if index > 0:
                        index -= 1  # OBJ is 1-indexed
                    elif index < 0:
                        index += len(positions)
                    else:
                        raise GeometryError(f"{path}:{line_no}: face index 0 is invalid")
                    face.append(index)

                # Fan triangulation for convex polygons
                for i in range(1, len(face) - 1):
                    triangles.append((face[0], face[i], face[i + 1]))

    vertices = np.array(positions, dtype=np.float64).reshape(-1, 3)
    indices = np.array(triangles, dtype=np.int64).reshape(-1, 3)
    return TriangleMesh(vertices=vertices, triangles=indices)
