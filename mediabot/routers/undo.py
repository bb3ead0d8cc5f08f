"""API endpoints for the undo journal."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import LibraryLog
from ..services.errors import UndoRefused
from ..services.pipeline import get_journal

router = APIRouter(prefix="/api/undo", tags=["undo"])


def log_undo(db: Session, outcome: dict):
    db.add(LibraryLog(
        action_type="undo",
        result="success" if outcome["success"] else "failed",
        details=f"{outcome['description']}: {outcome['success_count']}/{outcome['total_actions']} actions reversed",
    ))
    db.commit()


@router.get("")
async def list_operations():
    journal = get_journal()
    return {
        "operations": [op.to_dict() for op in journal.operations()],
        "stats": journal.stats(),
    }


@router.post("/last")
async def undo_last(db: Session = Depends(get_db)):
    try:
        outcome = await get_journal().undo_last()
    except UndoRefused as e:
        raise HTTPException(status_code=409, detail=e.message)
    log_undo(db, outcome)
    return outcome


@router.delete("")
async def clear_history():
    get_journal().clear()
    return {"success": True}


@router.post("/{operation_id}")
async def undo_operation(operation_id: str, db: Session = Depends(get_db)):
    journal = get_journal()
    if journal.get(operation_id) is None:
        raise HTTPException(status_code=404, detail="Operation not found")
    try:
        outcome = await journal.undo(operation_id)
    except UndoRefused as e:
        raise HTTPException(status_code=409, detail=e.message)
    log_undo(db, outcome)
    return outcome
