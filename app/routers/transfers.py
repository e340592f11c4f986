from functools import lru_cache
from io import BytesIO
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.errors import TransferError
from app.services.object_store import ObjectStore, build_object_store
from app.services.record_store import TransferRecordStore
from app.services.transfer_service import TransferService

router = APIRouter(prefix="/api")


@lru_cache
def get_object_store() -> ObjectStore:
    return build_object_store()


def get_transfer_service(
    db: Session = Depends(get_db),
    storage: ObjectStore = Depends(get_object_store),
) -> TransferService:
    return TransferService(TransferRecordStore(db), storage)


def _http_error(exc: TransferError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail={"error": exc.kind, "message": str(exc)})


def _content_disposition(file_name: str) -> str:
    fallback = file_name.encode("ascii", "replace").decode("ascii").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name, safe='')}"


@router.post("/upload")
async def upload_file(
    file: UploadFile | None = File(default=None),
    max_downloads: int | None = Form(default=None),
    service: TransferService = Depends(get_transfer_service),
):
    if file is None:
        raise HTTPException(status_code=400, detail={"error": "validation_error", "message": "No file uploaded"})

    if file.size is not None and file.size > service.max_file_size:
        raise HTTPException(
            status_code=400,
            detail={"error": "validation_error", "message": f"File too large (max {service.max_file_size} bytes)"},
        )

    raw_bytes = await file.read()
    try:
        # Encryption, the blob write and the commit block; keep them off the event loop
        key = await run_in_threadpool(
            service.upload,
            raw_bytes,
            file.filename or "",
            file.content_type or "",
            len(raw_bytes),
            max_downloads=max_downloads,
        )
    except TransferError as exc:
        raise _http_error(exc)

    return {"status_code": 200, "key": key}


@router.get("/download/{key}")
def download_file(
    key: str,
    service: TransferService = Depends(get_transfer_service),
):
    try:
        downloaded = service.download(key)
    except TransferError as exc:
        raise _http_error(exc)

    return StreamingResponse(
        BytesIO(downloaded.content),
        media_type=downloaded.mime_type,
        headers={"Content-Disposition": _content_disposition(downloaded.file_name)},
    )
