"""API endpoints for previewing and executing renames."""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.disambiguation import GroupNotPending
from ..services.executor import OperationExecutor
from ..services.pipeline import RenamePipeline, get_journal
from ..services.planner import RenameOperation
from ..services.scanner import file_id
from ..services.settings_store import DatabaseSettingsProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rename", tags=["rename"])

# The most recent preview session
_session: dict = {"pipeline": None}


class FileEntry(BaseModel):
    path: str
    id: Optional[str] = None
    name: Optional[str] = None


class PreviewRequest(BaseModel):
    files: list[FileEntry]
    template: Optional[str] = None
    auto_resolve: bool = True


class GroupResolveRequest(BaseModel):
    provider_id: str
    external_id: str


class OperationRequest(BaseModel):
    """One entry of a batch rename request."""

    id: str
    old_path: str
    new_path: str
    needs_directory_creation: bool = False
    season_folder: Optional[str] = None
    series_folder: Optional[str] = None
    metadata: Optional[dict] = None
    cleanup_source: bool = False


class ExecuteRequest(BaseModel):
    operations: Optional[list[OperationRequest]] = None


class RestoreBackupsRequest(BaseModel):
    path: str


def get_pipeline() -> RenamePipeline:
    pipeline = _session["pipeline"]
    if pipeline is None:
        raise HTTPException(status_code=409, detail="No rename preview in progress")
    return pipeline


async def close_session():
    pipeline = _session["pipeline"]
    _session["pipeline"] = None
    if pipeline is not None:
        await pipeline.close()


def session_state(pipeline: RenamePipeline) -> dict:
    return {
        "previews": [p.to_dict() for p in pipeline.previews()],
        "pending_groups": [g.to_dict() for g in pipeline.coordinator.pending_groups()],
    }


@router.post("/preview")
async def preview(request: PreviewRequest, db: Session = Depends(get_db)):
    """Parse, look up and plan a set of files. Starts a new session."""
    if not request.files:
        raise HTTPException(status_code=400, detail="No files given")

    await close_session()
    pipeline = RenamePipeline(
        DatabaseSettingsProvider(db), db=db, template=request.template
    )
    _session["pipeline"] = pipeline

    files = [
        {
            "id": f.id or file_id(f.path),
            "path": f.path,
            "name": f.name or Path(f.path).name,
        }
        for f in request.files
    ]
    await pipeline.preview(files, auto_resolve=request.auto_resolve)
    return session_state(pipeline)


@router.get("/groups/next")
async def next_group():
    """The next series waiting for confirmation, or null."""
    group = get_pipeline().coordinator.next_group()
    return {"group": group.to_dict() if group else None}


@router.post("/groups/{key}/resolve")
async def resolve_group(key: str, request: GroupResolveRequest):
    pipeline = get_pipeline()
    try:
        await pipeline.resolve_group(key, request.provider_id, request.external_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Group or match not found")
    except GroupNotPending as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session_state(pipeline)


@router.post("/groups/{key}/skip")
async def skip_group(key: str):
    pipeline = get_pipeline()
    try:
        pipeline.skip_group(key)
    except KeyError:
        raise HTTPException(status_code=404, detail="Group not found")
    except GroupNotPending as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session_state(pipeline)


@router.post("/execute")
async def execute(request: ExecuteRequest, db: Session = Depends(get_db)):
    """Execute the given operations, or the current preview when none are given."""
    if request.operations is not None:
        operations = [RenameOperation.from_dict(op.model_dump()) for op in request.operations]
        pipeline = _session["pipeline"] or RenamePipeline(DatabaseSettingsProvider(db), db=db)
    else:
        pipeline = get_pipeline()
        operations = None

    pipeline.db = db
    pipeline.settings_provider = DatabaseSettingsProvider(db)
    batch = await pipeline.execute(operations)
    return batch.to_dict()


@router.post("/restore-backups")
async def restore_backups(request: RestoreBackupsRequest):
    folder = Path(request.path)
    if not folder.is_dir():
        raise HTTPException(status_code=404, detail=f"Folder not found: {request.path}")

    results = OperationExecutor(journal=get_journal()).restore_backups(str(folder))
    return {
        "results": results,
        "restored": sum(1 for r in results if r["success"]),
        "failed": sum(1 for r in results if not r["success"]),
    }
