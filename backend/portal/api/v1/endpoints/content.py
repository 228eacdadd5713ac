"""
Read-only content endpoints for the public site.
"""
from fastapi import APIRouter, Depends

from portal.api.dependencies import get_store
from portal.core.exceptions import DocumentNotFoundError
from portal.services.document_store import DocumentStore

router = APIRouter()


@router.get("/{collection}")
async def list_documents(
    collection: str,
    store: DocumentStore = Depends(get_store),
):
    """All documents of a collection, in insertion order"""
    documents = await store.list(collection)
    return {
        "collection": collection,
        "total": len(documents),
        "items": [{"id": doc_id, **{k: v for k, v in fields.items() if k != "id"}}
                  for doc_id, fields in documents],
    }


@router.get("/{collection}/{doc_id}")
async def get_document(
    collection: str,
    doc_id: str,
    store: DocumentStore = Depends(get_store),
):
    document = await store.get(collection, doc_id)
    if document is None:
        raise DocumentNotFoundError(collection, doc_id)
    return {"id": doc_id, **{k: v for k, v in document.items() if k != "id"}}
