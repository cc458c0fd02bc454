"""
Базовые структуры данных и константы для построения NavMesh.

Система координат: Y — вверх, сетка лежит в плоскости XZ.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional
import numpy as np

from navgen.errors import GeometryError


# Типы областей (area id)
NULL_AREA = 0        # Непроходимо
WALKABLE_AREA = 63   # Проходимо (по умолчанию)
MAX_AREA = 63

# Регионы
NO_REGION = 0

# Связи компактных спанов
NOT_CONNECTED = -1

# Максимальная высота спана в ячейках (cell_height)
SPAN_MAX_HEIGHT = 0xFFFF

# Смещения соседей по направлениям: 0 = -X, 1 = +Z, 2 = +X, 3 = -Z
DIR_OFFSET_X = (-1, 0, 1, 0)
DIR_OFFSET_Z = (0, 1, 0, -1)


def validate_area_id(value: int) -> int:
    """Проверить area id (0..MAX_AREA). Возвращает значение как int."""
    area = int(value)
    if area < NULL_AREA or area > MAX_AREA:
        raise ValueError(f"area id must be in [0, {MAX_AREA}], got {value}")
    return area


def validate_region_id(value: int) -> int:
    """Проверить region id (0 = нет региона)."""
    region = int(value)
    if region < NO_REGION or region > 0xFFFF:
        raise ValueError(f"region id must be in [0, 65535], got {value}")
    return region


@dataclass
class TriangleMesh:
    """
    Треугольный меш — вход пайплайна.

    Треугольники ориентированы так, что cross(v1 - v0, v2 - v0) смотрит вверх
    для проходимых поверхностей.
    """

    vertices: np.ndarray
    """Вершины в мировых координатах, shape (N, 3)."""

    triangles: np.ndarray
    """Индексы вершин треугольников, shape (M, 3)."""

    areas: Optional[np.ndarray] = None
    """Переопределение area id для каждого треугольника, shape (M,). None = WALKABLE_AREA."""

    def __post_init__(self) -> None:
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.triangles = np.asarray(self.triangles, dtype=np.int64).reshape(-1, 3)
        if self.areas is not None:
            self.areas = np.asarray(self.areas, dtype=np.int64).reshape(-1)

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    def validate(self) -> None:
        """
        Проверить геометрию.

        Raises:
            GeometryError: Пустой меш, индексы вне диапазона, неверные area id.
        """
        if self.vertex_count == 0 or self.triangle_count == 0:
            raise GeometryError(
                f"input geometry is empty: {self.vertex_count} vertices, "
                f"{self.triangle_count} triangles"
            )
        if not np.all(np.isfinite(self.vertices)):
            raise GeometryError("input vertices contain NaN or infinite values")
        if self.triangles.min() < 0 or self.triangles.max() >= self.vertex_count:
            raise GeometryError(
                f"triangle indices out of range [0, {self.vertex_count})"
            )
        if self.areas is not None:
            if len(self.areas) != self.triangle_count:
                raise GeometryError(
                    f"area override has {len(self.areas)} entries "
                    f"for {self.triangle_count} triangles"
                )
            if self.areas.min() < NULL_AREA or self.areas.max() > MAX_AREA:
                raise GeometryError(f"area override values must be in [0, {MAX_AREA}]")

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """AABB всех вершин: (bmin, bmax)."""
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def extend(self, other: "TriangleMesh") -> None:
        """Дописать другой меш (индексы смещаются)."""
        offset = self.vertex_count
        own_areas = self.areas
        other_areas = other.areas
        if own_areas is not None or other_areas is not None:
            if own_areas is None:
                own_areas = np.full(self.triangle_count, WALKABLE_AREA, dtype=np.int64)
            if other_areas is None:
                other_areas = np.full(other.triangle_count, WALKABLE_AREA, dtype=np.int64)
            self.areas = np.concatenate([own_areas, other_areas])
        self.vertices = np.vstack([self.vertices, other.vertices])
        self.triangles = np.vstack([self.triangles, other.triangles + offset])


@dataclass
class ConvexVolume:
    """
    Выпуклый объём, помечающий спаны заданным area id.

    Полигон задаётся в плоскости XZ (Y вершин игнорируется),
    по высоте объём ограничен [hmin, hmax] в мировых координатах.
    """

    vertices: np.ndarray
    hmin: float
    hmax: float
    area: int

    def __post_init__(self) -> None:
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.area = validate_area_id(self.area)

    def to_dict(self) -> dict:
        return {
            "vertices": self.vertices.tolist(),
            "hmin": self.hmin,
            "hmax": self.hmax,
            "area": self.area,
        }

    @staticmethod
    def from_dict(data: dict) -> "ConvexVolume":
        return ConvexVolume(
            vertices=np.array(data["vertices"], dtype=np.float64),
            hmin=data["hmin"],
            hmax=data["hmax"],
            area=data["area"],
        )


@dataclass
class BuildStats:
    """Статистика построения: счётчики и время стадий в миллисекундах."""

    counters: dict[str, int] = field(default_factory=dict)
    timings_ms: dict[str, float] = field(default_factory=dict)
