"""Result serialization."""

from audiomanifold.io.exporter import ManifoldExporter

__all__ = ["ManifoldExporter"]
