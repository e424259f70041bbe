"""Back up an Azure Cognitive Search index to blob storage and restore it into a new index."""

__version__ = "0.1.0"
