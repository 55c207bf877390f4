from __future__ import annotations

import re
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse, StreamingResponse
from starlette.background import BackgroundTask

from api.dependencies import get_config, get_job_manager, get_registry
from api.utils.executors import read_limited, run_sync
from core.pdfa_converter.broadcast import SessionNotFound, SessionRegistry, format_sse
from core.pdfa_converter.bundle import BundleNotFound, build_bundle, bundle_filename
from core.pdfa_converter.config import AppConfig
from core.pdfa_converter.core import ConversionError
from core.pdfa_converter.detection import accepts_upload
from core.pdfa_converter.jobs import JobManager
from core.pdfa_converter.models import SourceFile
from core.pdfa_converter.notify import is_valid_email
from core.pdfa_converter.utils import remove_path
from models.schemas import CancelResponse, ConversionAccepted

router = APIRouter(prefix="/api", tags=["conversions"])

SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _checked_session_id(session_id: str) -> str:
    if not SESSION_ID_RE.fullmatch(session_id):
        raise HTTPException(status_code=404, detail="SESSION_NOT_FOUND")
    return session_id


@router.post("/convert", summary="Start a PDF/A conversion batch", status_code=202, response_model=ConversionAccepted)
async def start_conversion(
    files: list[UploadFile] | None = File(None),
    output_name: str | None = Form(None),
    email: str | None = Form(None),
    manager: JobManager = Depends(get_job_manager),
    config: AppConfig = Depends(get_config),
) -> ConversionAccepted:
    uploads = files or []
    if not uploads:
        raise HTTPException(status_code=400, detail="NO_FILES")
    if len(uploads) > config.runtime.max_files:
        raise HTTPException(status_code=400, detail="TOO_MANY_FILES")
    notify_email = (email or "").strip() or None
    if notify_email and not is_valid_email(notify_email):
        raise HTTPException(status_code=400, detail="INVALID_EMAIL")

    staged: list[SourceFile] = []
    try:
        for upload in uploads:
            if not accepts_upload(upload.filename, upload.content_type):
                raise HTTPException(status_code=400, detail="UNSUPPORTED_TYPE")
            if upload.size is not None and upload.size > config.max_upload_bytes:
                raise HTTPException(status_code=413, detail="FILE_TOO_LARGE")
            payload = await read_limited(upload, config.max_upload_bytes)
            if payload is None:
                raise HTTPException(status_code=413, detail="FILE_TOO_LARGE")
            staged.append(await run_sync(manager.stage_upload, upload.filename, payload))
        session_id = manager.submit(
            staged,
            output_name=(output_name or "").strip() or None,
            notify_email=notify_email,
        )
    except ConversionError as exc:
        manager.discard(staged)
        status = 413 if exc.code == "TOO_LARGE" else 400
        raise HTTPException(status_code=status, detail=exc.code) from exc
    except HTTPException:
        manager.discard(staged)
        raise
    return ConversionAccepted(session_id=session_id)


@router.get("/progress/{session_id}", summary="Stream conversion progress as server-sent events")
async def stream_progress(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> StreamingResponse:
    _checked_session_id(session_id)
    try:
        subscription = registry.subscribe(session_id)
    except SessionNotFound as exc:
        raise HTTPException(status_code=404, detail="SESSION_NOT_FOUND") from exc

    async def _events():
        try:
            async for event in subscription:
                yield format_sse(event)
        finally:
            registry.unsubscribe(session_id, subscription)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/download/{session_id}", summary="Download the converted files as a zip bundle")
async def download_bundle(session_id: str, manager: JobManager = Depends(get_job_manager)) -> FileResponse:
    _checked_session_id(session_id)
    if manager.is_active(session_id):
        raise HTTPException(status_code=409, detail="SESSION_RUNNING")
    session_dir = manager.session_dir(session_id)
    try:
        bundle = await run_sync(build_bundle, session_dir)
    except BundleNotFound as exc:
        raise HTTPException(status_code=404, detail="BUNDLE_NOT_FOUND") from exc
    filename = bundle_filename(session_dir)
    return FileResponse(
        bundle,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
        background=BackgroundTask(remove_path, session_dir),
    )


@router.post("/sessions/{session_id}/cancel", summary="Cancel a running batch", response_model=CancelResponse)
async def cancel_conversion(session_id: str, manager: JobManager = Depends(get_job_manager)) -> CancelResponse:
    _checked_session_id(session_id)
    if not manager.cancel(session_id):
        raise HTTPException(status_code=409, detail="NOT_CANCELABLE")
    return CancelResponse(session_id=session_id, canceled=True)


__all__ = ["router"]
