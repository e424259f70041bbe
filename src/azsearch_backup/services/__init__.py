"""Search service wrappers and the export/import stages."""
