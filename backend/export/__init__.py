from export.importer import ImportFormatError, import_tables
from export.tables import ExportTables, export_projects

__all__ = ["ExportTables", "ImportFormatError", "export_projects", "import_tables"]
