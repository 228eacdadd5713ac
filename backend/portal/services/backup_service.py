"""
Backup Service - full JSON export and restore of the site's document collections

Backup file layout:

    {
      "metadata": {"timestamp": "...", "exportedBy": "...",
                   "projectName": "...", "userAgent": "..."},
      "collections": {"news": [{"id": "abc", "title": "..."}, ...], ...}
    }

EXPORT:
- Reads every collection in BACKUP_COLLECTIONS, all documents at once
- Any read failure aborts the export (no partial artifact)
- Collections that exist in the store but are not listed are NOT exported;
  they are reported so the list can be updated

RESTORE:
- Malformed JSON or a missing "collections" object is rejected before any write
- Collections outside BACKUP_COLLECTIONS are rejected unless explicitly allowed
- Each record is written back at its original id, replacing all fields
- A failing document is recorded and the restore carries on
- There is no transaction: documents written before a failure or a
  cancellation stay written. Restoring the same file again is safe.
"""

import inspect
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from portal.core.config import settings
from portal.core.exceptions import BackupValidationError, BackupWriteFailure
from portal.core.logging_config import logger


BACKUP_COLLECTIONS: Tuple[str, ...] = (
    "users",
    "events",
    "event_categories",
    "top_students",
    "admissions_content",
    "page_content",
    "inquiries",
    "subscribers",
    "settings",
    "activity_logs",
    "admin_sessions",
    "news",
    "workshops",
    "placements",
    "courses",
    "system_logs",
    "analytics",
)

NO_ROLLBACK_WARNING = (
    "Restore is not transactional: documents written before a failure remain written. "
    "Re-running the same backup file is safe."
)

ProgressCallback = Callable[[str, int], Union[None, Awaitable[None]]]


@dataclass
class ExportResult:
    manifest: Dict[str, Any]
    stats: Dict[str, int]
    filename: str
    unlisted_collections: List[str] = field(default_factory=list)

    @property
    def total_documents(self) -> int:
        return sum(self.stats.values())

    def to_json(self) -> str:
        return json.dumps(self.manifest, indent=2, ensure_ascii=False, default=str)


@dataclass
class RestoreFailure:
    collection: str
    index: int
    document_id: Optional[str]
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "index": self.index,
            "document_id": self.document_id,
            "error": self.error,
        }


@dataclass
class RestoreReport:
    total_restored: int = 0
    collections_touched: int = 0
    restored_by_collection: Dict[str, int] = field(default_factory=dict)
    failures: List[RestoreFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_restored": self.total_restored,
            "collections_touched": self.collections_touched,
            "restored_by_collection": self.restored_by_collection,
            "failed": len(self.failures),
            "failures": [f.to_dict() for f in self.failures],
            "warnings": self.warnings,
            "message": (
                f"Successfully restored {self.total_restored} documents across "
                f"{self.collections_touched} collections."
            ),
        }


class BackupService:
    """Export/restore of BACKUP_COLLECTIONS against a document store"""

    def __init__(
        self,
        store,
        collections: Tuple[str, ...] = BACKUP_COLLECTIONS,
        project_name: str = settings.APP_NAME,
        filename_prefix: str = settings.BACKUP_FILENAME_PREFIX,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.collections = tuple(collections)
        self.project_name = project_name
        self.filename_prefix = filename_prefix
        self.now = now

    def filename(self, when: Optional[datetime] = None) -> str:
        when = when or self.now()
        return f"{self.filename_prefix}-{when.date().isoformat()}.json"

    # ==================== Export ====================

    async def export(self, exported_by: str, user_agent: str = "") -> ExportResult:
        """
        Snapshot every listed collection into one manifest.

        Raises:
            BackupWriteFailure: a collection could not be read; nothing is returned
        """
        started = self.now()
        manifest: Dict[str, Any] = {
            "metadata": {
                "timestamp": started.isoformat(),
                "exportedBy": exported_by,
                "projectName": self.project_name,
                "userAgent": user_agent,
            },
            "collections": {},
        }
        stats: Dict[str, int] = {}

        for name in self.collections:
            try:
                documents = await self.store.list(name)
            except Exception as e:
                logger.error(f"[Backup] Export aborted while reading '{name}': {e}")
                raise BackupWriteFailure(name, str(e)) from e

            records = []
            for doc_id, fields in documents:
                if "id" in fields:
                    logger.warning(f"[Backup] {name}/{doc_id} has an 'id' field; the document id wins")
                record = {"id": doc_id}
                record.update({k: v for k, v in fields.items() if k != "id"})
                records.append(record)

            manifest["collections"][name] = records
            stats[name] = len(records)

        unlisted = await self.unlisted_collections()
        if unlisted:
            logger.warning(
                f"[Backup] Collections not covered by backups: {', '.join(unlisted)}"
            )

        result = ExportResult(
            manifest=manifest,
            stats=stats,
            filename=self.filename(started),
            unlisted_collections=unlisted,
        )
        logger.log_backup_event(
            "export", operator=exported_by,
            documents=result.total_documents, collections=len(stats),
        )
        return result

    async def unlisted_collections(self) -> List[str]:
        try:
            present = await self.store.collections()
        except Exception as e:
            logger.warning(f"[Backup] Could not list store collections: {e}")
            return []
        return sorted(name for name in present if name not in self.collections)

    # ==================== Restore ====================

    def parse_manifest(self, content: Union[str, bytes]) -> Dict[str, Any]:
        """
        Parse and validate a backup file without touching the store.

        Raises:
            BackupValidationError: not UTF-8, not JSON, or no "collections" object
        """
        if isinstance(content, bytes):
            try:
                content = content.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise BackupValidationError(f"Backup file is not UTF-8 text: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise BackupValidationError(f"Malformed backup file: {e.msg} (line {e.lineno})") from e

        if not isinstance(data, dict) or "collections" not in data:
            raise BackupValidationError("Invalid backup file format", field="collections")

        collections = data["collections"]
        if not isinstance(collections, dict):
            raise BackupValidationError("'collections' must be an object of collection name to records",
                                        field="collections")

        not_lists = [name for name, records in collections.items() if not isinstance(records, list)]
        if not_lists:
            raise BackupValidationError("Every collection must hold a list of records",
                                        field="collections", collections=not_lists)
        return data

    async def restore(
        self,
        content: Union[str, bytes],
        allow_unlisted: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> RestoreReport:
        """
        Upsert every record of the backup at its original id.

        Collections are processed in file order, records in array order.

        Raises:
            BackupValidationError: the file was rejected and nothing was written
        """
        manifest = self.parse_manifest(content)
        collections: Dict[str, List[Any]] = manifest["collections"]

        unlisted = [name for name in collections if name not in self.collections]
        report = RestoreReport()
        if unlisted:
            if not allow_unlisted:
                raise BackupValidationError(
                    f"Backup references collections that are not part of backups: {', '.join(unlisted)}",
                    field="collections",
                    collections=unlisted,
                )
            report.warnings.append(
                f"Restored collections that are not part of backups: {', '.join(unlisted)}"
            )

        for name, records in collections.items():
            logger.info(f"[Backup] Restoring {name}... ({len(records)} records)")
            await self._emit(progress, name, report.total_restored)

            restored = 0
            for index, record in enumerate(records):
                doc_id, fields, problem = self._split_record(record)
                if problem:
                    report.failures.append(RestoreFailure(name, index, doc_id, problem))
                    continue
                try:
                    await self.store.set(name, doc_id, fields)
                except Exception as e:
                    logger.warning(f"[Backup] Failed to restore {name}/{doc_id}: {e}")
                    report.failures.append(RestoreFailure(name, index, doc_id, str(e)))
                    continue
                restored += 1
                report.total_restored += 1

            report.restored_by_collection[name] = restored
            report.collections_touched += 1

        report.warnings.append(NO_ROLLBACK_WARNING)
        if report.failures:
            logger.warning(
                f"[Backup] Restore finished with {len(report.failures)} failed documents"
            )
        logger.log_backup_event(
            "restore", documents=report.total_restored,
            collections=report.collections_touched, failed=len(report.failures),
        )
        return report

    @staticmethod
    def _split_record(record: Any) -> Tuple[Optional[str], Dict[str, Any], Optional[str]]:
        if not isinstance(record, dict):
            return None, {}, "Record is not an object"
        doc_id = record.get("id")
        if isinstance(doc_id, bool) or not isinstance(doc_id, (str, int)) or doc_id == "":
            return None, {}, "Record has no usable 'id'"
        fields = {k: v for k, v in record.items() if k != "id"}
        return str(doc_id), fields, None

    @staticmethod
    async def _emit(progress: Optional[ProgressCallback], collection: str, restored: int) -> None:
        if progress is None:
            return
        try:
            result = progress(collection, restored)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[Backup] Progress callback failed at '{collection}': {e}")
