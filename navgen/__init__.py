"""
NavMesh generation from triangle geometry.

Алгоритм:
1. Растеризация треугольников в heightfield
2. Фильтрация спанов под размер агента
3. Компактный heightfield, эрозия на радиус агента
4. Поле расстояний и регионы водоразделом
5. Контуры регионов
6. Выпуклые полигоны со смежностью
7. Детальная сетка высот
"""

from navgen.config import (
    AgentSettings,
    BuildContoursFlags,
    NavMeshConfig,
    load_config,
    save_config,
)
from navgen.errors import ConfigError, GeometryError, NavMeshError, TopologyError
from navgen.types import (
    NULL_AREA,
    WALKABLE_AREA,
    NO_REGION,
    BuildStats,
    ConvexVolume,
    TriangleMesh,
)
from navgen.pipeline import NavMeshBuilder, NavMeshBuildResult, build_navmesh
from navgen.polymesh import PolyMesh
from navgen.detail_mesh import PolyMeshDetail
from navgen.persistence import NavMeshPersistence, NAVMESH_FILE_EXTENSION
from navgen.loaders import load_obj

__all__ = [
    "AgentSettings",
    "BuildContoursFlags",
    "NavMeshConfig",
    "load_config",
    "save_config",
    "ConfigError",
    "GeometryError",
    "NavMeshError",
    "TopologyError",
    "NULL_AREA",
    "WALKABLE_AREA",
    "NO_REGION",
    "BuildStats",
    "ConvexVolume",
    "TriangleMesh",
    "NavMeshBuilder",
    "NavMeshBuildResult",
    "build_navmesh",
    "PolyMesh",
    "PolyMeshDetail",
    "NavMeshPersistence",
    "NAVMESH_FILE_EXTENSION",
    "load_obj",
]
