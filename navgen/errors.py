"""
Ошибки построения навигационной сетки.
"""


class NavMeshError(Exception):
    """Базовая ошибка построения NavMesh."""


class ConfigError(NavMeshError):
    """Несогласованные параметры конфигурации. Построение не начинается."""


class GeometryError(NavMeshError):
    """Входная геометрия пуста или некорректна."""


class TopologyError(NavMeshError):
    """
    Граница региона не замыкается в простой контур.

    Прерывает построение контура только для одного региона.
    """

    def __init__(self, region: int, message: str) -> None:
        super().__init__(f"region {region}: {message}")
        self.region = region
        self.message = message
