"""
Сохранение и загрузка навигационной сетки.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from navgen import log
from navgen.detail_mesh import PolyMeshDetail
from navgen.polymesh import PolyMesh


NAVMESH_FILE_EXTENSION = ".navmesh"
NAVMESH_FORMAT_VERSION = "1.0"


class NavMeshPersistence:
    """
    Сохранение и загрузка PolyMesh и PolyMeshDetail в файл .navmesh.

    Формат — JSON с массивами вершин, полигонов и детальных треугольников.
    """

    @staticmethod
    def save(
        poly_mesh: PolyMesh,
        detail_mesh: PolyMeshDetail,
        path: Union[str, Path],
        name: str = "",
    ) -> None:
        """
        Сохранить навигационную сетку в файл.

        Args:
            poly_mesh: Полигональная сетка.
            detail_mesh: Детальная сетка высот.
            path: Путь к файлу (.navmesh).
            name: Имя сетки.
        """
        path = Path(path)

        data = {
            "version": NAVMESH_FORMAT_VERSION,
            "name": name,
            "poly_mesh": {
                "bmin": poly_mesh.bmin.tolist(),
                "bmax": poly_mesh.bmax.tolist(),
                "cell_size": poly_mesh.cell_size,
                "cell_height": poly_mesh.cell_height,
                "max_verts_per_poly": poly_mesh.max_verts_per_poly,
                "max_edge_error": poly_mesh.max_edge_error,
                "verts": poly_mesh.verts.tolist(),
                "polys": poly_mesh.polys.tolist(),
                "neighbors": poly_mesh.neighbors.tolist(),
                "regions": poly_mesh.regions.tolist(),
                "areas": poly_mesh.areas.tolist(),
            },
            "detail_mesh": {
                "meshes": detail_mesh.meshes.tolist(),
                "verts": detail_mesh.verts.tolist(),
                "tris": detail_mesh.tris.tolist(),
            },
        }

        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

        log.info(f"[NavMeshPersistence] Saved {poly_mesh.poly_count} polygons to {path}")

    @staticmethod
    def load(path: Union[str, Path]) -> Tuple[PolyMesh, PolyMeshDetail]:
        """
        Загрузить навигационную сетку из файла.

        Args:
            path: Путь к файлу (.navmesh).

        Returns:
            (poly_mesh, detail_mesh).

        Raises:
            ValueError: Если формат файла неверный.
            FileNotFoundError: Если файл не найден.
        """
        path = Path(path)

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        version = data.get("version", "")
        if not version.startswith("1."):
            raise ValueError(f"Unsupported navmesh format version: {version}")

        try:
            pm = data["poly_mesh"]
            dm = data["detail_mesh"]
            nvp = int(pm["max_verts_per_poly"])

            poly_mesh = PolyMesh(
                verts=np.array(pm["verts"], dtype=np.int32).reshape(-1, 3),
                polys=np.array(pm["polys"], dtype=np.int32).reshape(-1, nvp),
                neighbors=np.array(pm["neighbors"], dtype=np.int32).reshape(-1, nvp),
                regions=np.array(pm["regions"], dtype=np.int32),
                areas=np.array(pm["areas"], dtype=np.int32),
                bmin=np.array(pm["bmin"], dtype=np.float64),
                bmax=np.array(pm["bmax"], dtype=np.float64),
                cell_size=float(pm["cell_size"]),
                cell_height=float(pm["cell_height"]),
                max_verts_per_poly=nvp,
                max_edge_error=float(pm["max_edge_error"]),
            )
            detail_mesh = PolyMeshDetail(
                meshes=np.array(dm["meshes"], dtype=np.int64).reshape(-1, 4),
                verts=np.array(dm["verts"], dtype=np.float32).reshape(-1, 3),
                tris=np.array(dm["tris"], dtype=np.int32).reshape(-1, 4),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed navmesh file {path}: {e}") from e

        return poly_mesh, detail_mesh

    @staticmethod
    def get_info(path: Union[str, Path]) -> dict:
        """
        Получить информацию о navmesh файле без построения массивов.

        Returns:
            Словарь: name, cell_size, cell_height, polygon_count, vertex_count,
            detail_vertex_count, detail_triangle_count.
        """
        path = Path(path)

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        pm = data.get("poly_mesh", {})
        dm = data.get("detail_mesh", {})

        return {
            "name": data.get("name", ""),
            "cell_size": pm.get("cell_size", 0.0),
            "cell_height": pm.get("cell_height", 0.0),
            "polygon_count": len(pm.get("polys", [])),
            "vertex_count": len(pm.get("verts", [])),
            "detail_vertex_count": len(dm.get("verts", [])),
            "detail_triangle_count": len(dm.get("tris", [])),
        }
