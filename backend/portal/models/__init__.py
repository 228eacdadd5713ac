# Re-export all models for convenient imports
from portal.models.document import Document

__all__ = [
    "Document",
]
