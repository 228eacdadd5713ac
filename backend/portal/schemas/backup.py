"""
Schemas for backup export/restore responses.
"""
from pydantic import BaseModel
from typing import Dict, List, Optional


class BackupExportResponse(BaseModel):
    """Export summary plus the manifest itself"""
    filename: str
    total_documents: int
    stats: Dict[str, int]
    unlisted_collections: List[str]
    manifest: Dict


class RestoreFailureItem(BaseModel):
    collection: str
    index: int
    document_id: Optional[str] = None
    error: str


class RestoreResponse(BaseModel):
    success: bool
    message: str
    total_restored: int
    collections_touched: int
    restored_by_collection: Dict[str, int]
    failed: int
    failures: List[RestoreFailureItem]
    warnings: List[str]


class BackupCollectionsResponse(BaseModel):
    collections: List[str]
    unlisted_collections: List[str]
