"""API endpoints for staging and writing container metadata."""

from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import LibraryLog
from ..services.errors import ResolverNoMatch
from ..services.metadata_writer import MetadataWriterService, build_metadata_map

router = APIRouter(prefix="/api/metadata", tags=["metadata"])


class StageRequest(BaseModel):
    path: str
    metadata: Optional[dict] = None
    record: Optional[dict] = None
    confidence: Optional[float] = None


class ApplyRequest(BaseModel):
    paths: list[str]


def get_writer() -> MetadataWriterService:
    return MetadataWriterService()


def require_file(path: str) -> Path:
    file_path = Path(path)
    if not file_path.is_file():
        raise HTTPException(status_code=404, detail=f"File not found: {path}")
    return file_path


@router.post("/stage")
async def stage_metadata(request: StageRequest):
    """Write a sidecar from either a raw tag map or a metadata record."""
    require_file(request.path)
    if request.metadata is None and request.record is None:
        raise HTTPException(status_code=400, detail="Either metadata or record is required")

    if request.metadata is not None:
        tags = request.metadata
        confidence = request.confidence
    else:
        tags = build_metadata_map(request.record)
        confidence = request.confidence if request.confidence is not None else request.record.get("confidence")

    staged = get_writer().stage(request.path, tags, confidence)
    return {"success": True, "staged": staged.to_dict()}


@router.get("/staged")
async def get_staged(path: str = Query(...)):
    staged = get_writer().check_staged(path)
    if staged is None:
        return {"has_staged": False}
    return {"has_staged": True, "applied": staged.applied, "staged": staged.to_dict()}


@router.post("/apply")
async def apply_metadata(request: ApplyRequest, db: Session = Depends(get_db)):
    """Apply staged metadata to each file; already applied files are skipped."""
    writer = get_writer()

    async def nothing_staged(path: str):
        raise ResolverNoMatch("No staged metadata")

    results = await writer.fetch_and_write_batch(request.paths, nothing_staged)

    for result in results:
        if result.skipped:
            continue
        db.add(LibraryLog(
            action_type="metadata" if result.success else "metadata_failed",
            file_path=result.path,
            metadata_written=result.success,
            result="success" if result.success else "failed",
            details=result.error,
        ))
    db.commit()

    return {
        "results": [r.to_dict() for r in results],
        "successful": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
    }


@router.get("/read")
async def read_metadata(path: str = Query(...)):
    """Container tags and stream info as reported by ffprobe."""
    require_file(path)
    info = await get_writer().read_metadata(path)
    if info is None:
        raise HTTPException(status_code=422, detail=f"Could not read metadata from {path}")
    return {"path": path, "metadata": info}


@router.get("/transcoder")
async def transcoder_status():
    return await get_writer().check_transcoder()
