"""
Document Store - collection/document storage for site content

Every piece of site content (news, events, settings, logs...) is a document
addressed by (collection, id) holding a JSON field map.

Contract used by the rest of the backend:
    store.get(collection, doc_id)            -> Optional[dict]
    store.set(collection, doc_id, fields)    full-overwrite upsert
    store.add(collection, fields)            insert with a generated id
    store.list(collection)                   -> [(doc_id, fields), ...]
    store.subscribe(collection, doc_id, cb)  -> unsubscribe callable

Subscribers are notified in-process after each committed write, in write order,
so a single document's listeners always see monotonically newer values.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.core.database import get_session_local
from portal.core.exceptions import DocumentStoreError
from portal.core.logging_config import logger
from portal.core.types import generate_id
from portal.models.document import Document


DocumentFields = Dict[str, Any]
SnapshotCallback = Callable[[Optional[DocumentFields]], Union[None, Awaitable[None]]]


class DocumentStore(ABC):
    """Minimal document database contract"""

    def __init__(self):
        self._subscribers: Dict[Tuple[str, str], List[SnapshotCallback]] = defaultdict(list)
        self._notify_lock = asyncio.Lock()

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[DocumentFields]:
        ...

    @abstractmethod
    async def _write(self, collection: str, doc_id: str, fields: DocumentFields) -> None:
        ...

    @abstractmethod
    async def list(self, collection: str) -> List[Tuple[str, DocumentFields]]:
        ...

    @abstractmethod
    async def collections(self) -> List[str]:
        """Names of every collection that currently holds documents"""
        ...

    async def set(self, collection: str, doc_id: str, fields: DocumentFields) -> None:
        """Create or fully overwrite the document at (collection, doc_id)"""
        if not doc_id:
            raise DocumentStoreError("Document id is required", collection=collection)
        async with self._notify_lock:
            await self._write(collection, str(doc_id), dict(fields))
            await self._notify(collection, str(doc_id), dict(fields))

    async def add(self, collection: str, fields: DocumentFields) -> str:
        """Insert a document under a generated id and return the id"""
        doc_id = generate_id()
        await self.set(collection, doc_id, fields)
        return doc_id

    async def merge(self, collection: str, doc_id: str, fields: DocumentFields) -> DocumentFields:
        """Shallow merge ``fields`` into the existing document (setDoc with merge)"""
        async with self._notify_lock:
            current = await self.get(collection, doc_id) or {}
            current.update(fields)
            await self._write(collection, doc_id, current)
            await self._notify(collection, doc_id, dict(current))
        return current

    # ==================== Subscriptions ====================

    async def subscribe(self, collection: str, doc_id: str,
                        callback: SnapshotCallback) -> Callable[[], None]:
        """
        Push-subscribe to one document.

        The callback receives the current value immediately, then every later
        value. Returns a callable that removes the subscription.
        """
        key = (collection, doc_id)
        self._subscribers[key].append(callback)

        try:
            current = await self.get(collection, doc_id)
        except Exception:
            self._subscribers[key].remove(callback)
            raise
        await self._deliver(callback, current, key)

        def unsubscribe() -> None:
            listeners = self._subscribers.get(key)
            if listeners and callback in listeners:
                listeners.remove(callback)
                if not listeners:
                    del self._subscribers[key]

        return unsubscribe

    def subscriber_count(self, collection: str, doc_id: str) -> int:
        return len(self._subscribers.get((collection, doc_id), []))

    async def _notify(self, collection: str, doc_id: str, fields: DocumentFields) -> None:
        for callback in list(self._subscribers.get((collection, doc_id), [])):
            await self._deliver(callback, fields, (collection, doc_id))

    async def _deliver(self, callback: SnapshotCallback, value: Optional[DocumentFields],
                       key: Tuple[str, str]) -> None:
        try:
            result = callback(dict(value) if value is not None else None)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # A broken listener must not fail the write that triggered it
            logger.error(f"[DocumentStore] Subscriber for {key[0]}/{key[1]} failed: {e}", exc_info=True)


class SQLDocumentStore(DocumentStore):
    """Document store persisted in the ``documents`` table"""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        super().__init__()
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_local()
        return self._session_factory

    async def get(self, collection: str, doc_id: str) -> Optional[DocumentFields]:
        try:
            async with self.session_factory() as session:
                row = await session.scalar(
                    select(Document).where(
                        Document.collection == collection,
                        Document.doc_id == str(doc_id),
                    )
                )
                return dict(row.data) if row is not None else None
        except Exception as e:
            raise DocumentStoreError(f"Read failed: {e}", collection=collection, document_id=str(doc_id)) from e

    async def _write(self, collection: str, doc_id: str, fields: DocumentFields) -> None:
        try:
            async with self.session_factory() as session:
                row = await session.scalar(
                    select(Document).where(
                        Document.collection == collection,
                        Document.doc_id == doc_id,
                    )
                )
                if row is None:
                    session.add(Document(collection=collection, doc_id=doc_id, data=fields, version=1))
                else:
                    row.data = fields
                    row.version = (row.version or 0) + 1
                await session.commit()
        except Exception as e:
            raise DocumentStoreError(f"Write failed: {e}", collection=collection, document_id=doc_id) from e

    async def list(self, collection: str) -> List[Tuple[str, DocumentFields]]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Document)
                    .where(Document.collection == collection)
                    .order_by(Document.id)
                )
                return [(row.doc_id, dict(row.data)) for row in result.scalars().all()]
        except Exception as e:
            raise DocumentStoreError(f"List failed: {e}", collection=collection) from e

    async def collections(self) -> List[str]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Document.collection, func.count(Document.id))
                    .group_by(Document.collection)
                    .order_by(Document.collection)
                )
                return [row[0] for row in result.all()]
        except Exception as e:
            raise DocumentStoreError(f"Collection listing failed: {e}") from e


# Create store instance
document_store = SQLDocumentStore()


# Dependency
async def get_document_store() -> DocumentStore:
    """Get the document store"""
    return document_store
