"""API endpoints for scanning operations and the library log."""

from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import LibraryLog
from ..services.parser import ParserService
from ..services.scanner import ScannerService

router = APIRouter(prefix="/api/scan", tags=["scan"])


class ScanFolderRequest(BaseModel):
    """Request model for scanning a specific folder."""

    path: str
    parse: bool = False


@router.post("")
async def scan_folder(request: ScanFolderRequest):
    """List the media files under a folder, optionally with their parsed names."""
    folder = Path(request.path)
    if not folder.is_dir():
        raise HTTPException(status_code=404, detail=f"Folder not found: {request.path}")

    files = ScannerService().scan_folder(str(folder))
    parser = ParserService()

    items = []
    for media_file in files:
        item = media_file.to_dict()
        if request.parse:
            item["parsed"] = parser.parse(media_file.name, media_file.path).to_dict()
        items.append(item)

    return {"path": str(folder), "count": len(items), "files": items}


# ── Library Log endpoints ─────────────────────────────────────────


@router.get("/library-log")
async def get_library_log(
    db: Session = Depends(get_db),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    action_type: Optional[str] = Query(default=None),
    date_from: Optional[str] = Query(default=None),
):
    """Get library log entries, newest first."""
    query = db.query(LibraryLog).order_by(LibraryLog.timestamp.desc())

    if action_type:
        query = query.filter(LibraryLog.action_type == action_type)

    if date_from:
        try:
            dt = datetime.fromisoformat(date_from)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid date: {date_from}")
        query = query.filter(LibraryLog.timestamp >= dt)

    total = query.count()
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)

    return {
        "total": total,
        "entries": [e.to_dict() for e in query.all()],
    }


@router.delete("/library-log")
async def clear_library_log(db: Session = Depends(get_db)):
    """Delete all library log entries."""
    count = db.query(LibraryLog).count()
    db.query(LibraryLog).delete()
    db.commit()
    return {"message": f"Deleted {count} log entries", "deleted": count}
