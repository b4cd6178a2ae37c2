"""Importers that turn external tabular data into reconciliation sources."""

from .tabular import FileConfig, TabularConfig, import_tabular

__all__ = ["FileConfig", "TabularConfig", "import_tabular"]
