"""
Admin Backup & Restore endpoints.

- GET  /backup/download     full backup as a JSON attachment
- GET  /backup/export       same backup, returned inline with its stats
- GET  /backup/collections  collections covered by backups
- POST /backup/restore      upload a backup file and write it back
"""
import json

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import StreamingResponse

from portal.api.dependencies import get_activity_logger, get_backup_service, get_current_admin
from portal.core.config import settings
from portal.core.exceptions import ValidationError
from portal.core.logging_config import logger
from portal.core.rate_limiter import backup_rate_limit
from portal.schemas.backup import BackupCollectionsResponse, BackupExportResponse, RestoreResponse
from portal.services.activity_logger import ActivityLogger, ActivityType
from portal.services.backup_service import BackupService

router = APIRouter()


@router.get("/download")
@backup_rate_limit()
async def download_backup(
    request: Request,
    backup: BackupService = Depends(get_backup_service),
    activity: ActivityLogger = Depends(get_activity_logger),
    current_admin: str = Depends(get_current_admin),
):
    """Download a full backup of every listed collection"""
    user_agent = request.headers.get("user-agent", "")
    result = await backup.export(current_admin, user_agent=user_agent)

    await activity.log(
        ActivityType.EXPORT_DATA,
        target="backup",
        admin_email=current_admin,
        details=f"Downloaded backup {result.filename}",
        metadata={"documents": result.total_documents, "collections": len(result.stats)},
        user_agent=user_agent,
    )

    body = result.to_json().encode("utf-8")
    return StreamingResponse(
        iter([body]),
        media_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Backup-Stats": json.dumps(result.stats, separators=(",", ":")),
            "X-Backup-Documents": str(result.total_documents),
        },
    )


@router.get("/export", response_model=BackupExportResponse)
@backup_rate_limit()
async def export_backup(
    request: Request,
    backup: BackupService = Depends(get_backup_service),
    current_admin: str = Depends(get_current_admin),
):
    """Build a backup and return it inline with per-collection counts"""
    result = await backup.export(current_admin, user_agent=request.headers.get("user-agent", ""))
    return BackupExportResponse(
        filename=result.filename,
        total_documents=result.total_documents,
        stats=result.stats,
        unlisted_collections=result.unlisted_collections,
        manifest=result.manifest,
    )


@router.get("/collections", response_model=BackupCollectionsResponse)
async def list_backup_collections(
    backup: BackupService = Depends(get_backup_service),
    current_admin: str = Depends(get_current_admin),
):
    """Collections included in backups, plus any in the store that are not"""
    return BackupCollectionsResponse(
        collections=list(backup.collections),
        unlisted_collections=await backup.unlisted_collections(),
    )


@router.post("/restore", response_model=RestoreResponse)
@backup_rate_limit()
async def restore_backup(
    request: Request,
    file: UploadFile = File(...),
    allow_unlisted: bool = Form(False),
    backup: BackupService = Depends(get_backup_service),
    activity: ActivityLogger = Depends(get_activity_logger),
    current_admin: str = Depends(get_current_admin),
):
    """
    Restore a backup file.

    Documents are overwritten at their original ids. The restore is not
    transactional; failed documents are listed in the response.
    """
    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise ValidationError(
            f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB",
            field="file",
        )

    logger.info(f"[Backup] Restore of '{file.filename}' requested by {current_admin}")
    report = await backup.restore(content, allow_unlisted=allow_unlisted)

    await activity.log(
        ActivityType.UPDATE_DATA,
        target="backup",
        admin_email=current_admin,
        details=f"Restored {report.total_restored} documents across {report.collections_touched} collections",
        metadata={"file": file.filename, "failed": len(report.failures)},
        user_agent=request.headers.get("user-agent", ""),
    )
    return RestoreResponse(**report.to_dict())
