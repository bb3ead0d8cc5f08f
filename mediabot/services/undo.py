"""In-memory undo journal for file and metadata operations."""

import logging
import os
import time
import uuid
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Union

from ..config import settings
from .errors import MediaBotError, UndoRefused

logger = logging.getLogger(__name__)


@dataclass
class RenameAction:
    old_path: str
    new_path: str
    file_id: Optional[str] = None
    type: str = "rename"


@dataclass
class MoveAction:
    old_path: str
    new_path: str
    file_id: Optional[str] = None
    was_copy: bool = False
    type: str = "move"


@dataclass
class MetadataAction:
    file_path: str
    new_metadata: dict = field(default_factory=dict)
    old_metadata: Optional[dict] = None
    backup_path: Optional[str] = None
    type: str = "metadata"


UndoAction = Union[RenameAction, MoveAction, MetadataAction]


@dataclass
class UndoOperation:
    """One recorded user-level operation and the actions it applied, in order."""

    id: str
    timestamp: float
    type: str
    description: str
    actions: list = field(default_factory=list)
    can_undo: bool = True
    undo_timestamp: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type,
            "description": self.description,
            "actions": [asdict(a) for a in self.actions],
            "can_undo": self.can_undo,
            "undo_timestamp": self.undo_timestamp,
        }


class UndoJournal:
    """Bounded, newest-first log of undoable operations.

    Undo replays an operation's actions in reverse order. Each action checks
    its own precondition and reports its own result; the operation is marked
    non-undoable afterwards even when some actions failed.
    """

    def __init__(self, max_operations: Optional[int] = None, writer=None):
        self.max_operations = max_operations or settings.undo_max_operations
        self.writer = writer
        self._operations: list[UndoOperation] = []

    # ── Recording ───────────────────────────────────────────────────

    def record(self, op_type: str, description: str, actions: list) -> UndoOperation:
        operation = UndoOperation(
            id=uuid.uuid4().hex,
            timestamp=time.time(),
            type=op_type,
            description=description,
            actions=list(actions),
        )
        self._operations.insert(0, operation)
        del self._operations[self.max_operations:]
        logger.info(f"Recorded undoable operation: {description} ({len(actions)} actions)")
        return operation

    def record_rename(self, renames: list[dict], description: str = "File rename operation") -> UndoOperation:
        actions = [
            RenameAction(old_path=r["old_path"], new_path=r["new_path"], file_id=r.get("id"))
            for r in renames
        ]
        return self.record("rename", f"{description} ({len(renames)} files)", actions)

    def record_move(self, moves: list[dict], description: str = "File move operation") -> UndoOperation:
        actions = [
            MoveAction(
                old_path=m["old_path"],
                new_path=m["new_path"],
                file_id=m.get("id"),
                was_copy=m.get("was_copy", False),
            )
            for m in moves
        ]
        return self.record("move", f"{description} ({len(moves)} files)", actions)

    def record_metadata(self, writes: list[dict], description: str = "Metadata write operation") -> UndoOperation:
        actions = [
            MetadataAction(
                file_path=w["file_path"],
                new_metadata=w.get("new_metadata") or {},
                old_metadata=w.get("old_metadata"),
                backup_path=w.get("backup_path"),
            )
            for w in writes
        ]
        return self.record("metadata", f"{description} ({len(writes)} files)", actions)

    # ── Queries ─────────────────────────────────────────────────────

    def operations(self) -> list[UndoOperation]:
        return list(self._operations)

    def undoable(self) -> list[UndoOperation]:
        return [op for op in self._operations if op.can_undo]

    def last(self) -> Optional[UndoOperation]:
        undoable = self.undoable()
        return undoable[0] if undoable else None

    def get(self, operation_id: str) -> Optional[UndoOperation]:
        for operation in self._operations:
            if operation.id == operation_id:
                return operation
        return None

    # ── Undo ────────────────────────────────────────────────────────

    async def undo_last(self) -> dict:
        operation = self.last()
        if operation is None:
            raise UndoRefused("No operations available to undo")
        return await self.undo(operation.id)

    async def undo(self, operation_id: str) -> dict:
        operation = self.get(operation_id)
        if operation is None:
            raise UndoRefused("Operation not found")
        if not operation.can_undo:
            raise UndoRefused("Operation cannot be undone")

        logger.info(f"Starting undo: {operation.description}")
        results = []
        for action in reversed(operation.actions):
            try:
                result = await self._undo_action(action)
            except (MediaBotError, OSError) as e:
                message = e.message if isinstance(e, MediaBotError) else str(e)
                logger.error(f"Failed to undo {action.type} action: {message}")
                result = {"success": False, "error": message}
            result["action"] = asdict(action)
            results.append(result)

        operation.can_undo = False
        operation.undo_timestamp = time.time()

        success_count = sum(1 for r in results if r["success"])
        failure_count = len(results) - success_count
        logger.info(
            f"Undo of '{operation.description}' finished: "
            f"{success_count} succeeded, {failure_count} failed"
        )
        return {
            "success": failure_count == 0,
            "operation_id": operation.id,
            "description": operation.description,
            "total_actions": len(results),
            "success_count": success_count,
            "failure_count": failure_count,
            "results": results,
        }

    async def _undo_action(self, action: UndoAction) -> dict:
        if isinstance(action, MetadataAction):
            return await self._undo_metadata(action)
        if isinstance(action, MoveAction) and action.was_copy:
            return self._undo_copy(action)
        return self._undo_rename(action)

    def _undo_rename(self, action) -> dict:
        new_path = Path(action.new_path)
        old_path = Path(action.old_path)

        if not new_path.exists():
            return {"success": False, "error": "Target file no longer exists"}
        if old_path.exists():
            return {"success": False, "error": "Original location is occupied by another file"}

        # The release folder may have been cleaned up after the move
        old_path.parent.mkdir(parents=True, exist_ok=True)
        os.rename(new_path, old_path)
        return {"success": True, "old_path": str(new_path), "new_path": str(old_path)}

    def _undo_copy(self, action: MoveAction) -> dict:
        copy = Path(action.new_path)
        if not Path(action.old_path).exists():
            return {"success": False, "error": "Original file no longer exists"}
        if not copy.exists():
            return {"success": False, "error": "Copied file no longer exists"}
        copy.unlink()
        return {"success": True, "removed": str(copy)}

    async def _undo_metadata(self, action: MetadataAction) -> dict:
        if action.backup_path and Path(action.backup_path).exists():
            os.replace(action.backup_path, action.file_path)
            return {"success": True, "method": "backup_restore"}

        if action.old_metadata and self.writer is not None:
            await self.writer.write(action.file_path, action.old_metadata)
            return {"success": True, "method": "metadata_restore"}

        return {
            "success": False,
            "error": "No backup or previous metadata to restore",
            "error_kind": "not_reversible",
        }

    # ── Maintenance ─────────────────────────────────────────────────

    def clear(self):
        self._operations.clear()
        logger.info("Undo history cleared")

    def clear_older_than(self, seconds: float) -> int:
        """Drop operations recorded more than ``seconds`` ago. Returns how many were dropped."""
        cutoff = time.time() - seconds
        before = len(self._operations)
        self._operations = [op for op in self._operations if op.timestamp >= cutoff]
        return before - len(self._operations)

    def stats(self) -> dict:
        by_type: dict[str, int] = {}
        for operation in self._operations:
            by_type[operation.type] = by_type.get(operation.type, 0) + 1
        return {
            "total": len(self._operations),
            "undoable": len(self.undoable()),
            "by_type": by_type,
            "newest": self._operations[0].timestamp if self._operations else None,
            "oldest": self._operations[-1].timestamp if self._operations else None,
        }
