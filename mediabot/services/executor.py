"""Applies planned rename operations to the filesystem."""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..config import Preferences, settings
from .cancellation import is_cancelled
from .errors import (
    CleanupFailure,
    DirectoryCreateFailure,
    MediaBotError,
    PathConflict,
    SourceMissing,
)
from .file_utils import (
    BACKUP_SUFFIX,
    has_relevant_files,
    is_release_folder,
    move_accompanying_files,
)
from .planner import RenameOperation
from .undo import MetadataAction, MoveAction, RenameAction, UndoJournal

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Result of a rename operation."""

    id: str
    success: bool
    old_path: str
    new_path: str
    error: Optional[str] = None
    error_kind: Optional[str] = None
    folders_created: list = field(default_factory=list)
    metadata_written: bool = False
    metadata_error: Optional[str] = None
    old_metadata: Optional[dict] = None
    backup_path: Optional[str] = None
    companions: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "success": self.success,
            "old_path": self.old_path,
            "new_path": self.new_path,
            "error": self.error,
            "error_kind": self.error_kind,
            "folders_created": list(self.folders_created),
            "metadata_written": self.metadata_written,
            "metadata_error": self.metadata_error,
            "backup_path": self.backup_path,
            "companions": [list(pair) for pair in self.companions],
        }


@dataclass
class BatchSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    metadata_written: int = 0
    errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "metadata_written": self.metadata_written,
            "errors": list(self.errors),
        }


@dataclass
class BatchResult:
    results: list = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)
    undo_operation_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
            "undo_operation_id": self.undo_operation_id,
        }


def no_clobber_rename(source: Path, dest: Path):
    """Rename without ever replacing an existing destination.

    Uses link+unlink so that a destination created after the existence
    check still fails. Falls back to a plain rename where hard links are
    unsupported.
    """
    try:
        os.link(source, dest)
    except FileExistsError as e:
        raise PathConflict(f"Destination already exists: {dest}") from e
    except (OSError, AttributeError, NotImplementedError):
        if dest.exists():
            raise PathConflict(f"Destination already exists: {dest}")
        os.rename(source, dest)
        return
    os.unlink(source)


def missing_parents(directory: Path) -> list[Path]:
    """Directories between ``directory`` and its first existing ancestor, outermost first."""
    missing = []
    current = directory
    while not current.exists() and current != current.parent:
        missing.append(current)
        current = current.parent
    return list(reversed(missing))


class OperationExecutor:
    """Executes rename operations one at a time with isolated failures."""

    def __init__(self, writer=None, journal: Optional[UndoJournal] = None):
        self.writer = writer
        self.journal = journal
        self.companion_extensions = set(
            settings.subtitle_extensions + settings.metadata_extensions + settings.image_extensions
        )

    async def execute(
        self,
        op: RenameOperation,
        preferences: Optional[Preferences] = None,
        cancel_token=None,
    ) -> OperationResult:
        """Run one operation. Raises MediaBotError or OSError on failure."""
        preferences = preferences or Preferences()
        source = Path(op.old_path)
        dest = Path(op.new_path)
        result = OperationResult(id=op.id, success=False, old_path=op.old_path, new_path=op.new_path)

        if not source.exists():
            raise SourceMissing(f"Source file does not exist: {source}")

        if source == dest:
            logger.info(f"{source.name} is already in place")
            result.success = True
            return result

        if dest.exists():
            raise PathConflict(f"Destination already exists: {dest}")

        if op.needs_directory_creation:
            to_create = missing_parents(dest.parent)
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DirectoryCreateFailure(f"Failed to create {dest.parent}: {e}") from e
            result.folders_created = [str(p) for p in to_create]
            for folder in to_create:
                logger.info(f"Created directory: {folder}")

        if preferences.create_backup:
            backup = source.with_name(source.name + BACKUP_SUFFIX)
            shutil.copy2(source, backup)
            result.backup_path = str(backup)
            logger.info(f"Backup created: {backup.name}")

        no_clobber_rename(source, dest)
        logger.info(f"Renamed: {source} -> {dest}")

        try:
            sidecar_suffix = self.writer.sidecar_suffix if self.writer else settings.sidecar_suffix
            result.companions = move_accompanying_files(
                source, dest, self.companion_extensions, sidecar_suffix
            )
        except OSError as e:
            logger.warning(f"Failed to move companion files for {source.name}: {e}")

        if source.parent != dest.parent and (op.cleanup_source or is_release_folder(source.parent.name)):
            self.cleanup_folder(source.parent)

        result.success = True

        if preferences.write_metadata and op.metadata and self.writer is not None:
            try:
                await self.write_metadata(op, result, cancel_token)
            except MediaBotError as e:
                result.metadata_error = e.message
                logger.warning(f"Metadata not written to {dest.name}: {e.message}")
            except OSError as e:
                result.metadata_error = str(e)
                logger.warning(f"Metadata not written to {dest.name}: {e}", exc_info=True)

        return result

    async def write_metadata(self, op: RenameOperation, result: OperationResult, cancel_token=None):
        """Tag the renamed file; a sidecar already applied is left alone."""
        dest = op.new_path
        staged = self.writer.check_staged(dest)
        if staged is None or not staged.applied:
            info = await self.writer.read_metadata(dest)
            result.old_metadata = info["tags"] if info else None

        async def planned_record(path: str) -> dict:
            return op.metadata

        written = await self.writer.fetch_and_write(dest, planned_record, cancel_token)
        if written.skipped:
            logger.info(f"{Path(dest).name} already carries its staged metadata")
            return
        result.metadata_written = written.success
        if not written.success:
            result.metadata_error = written.error
            logger.warning(f"Metadata not written to {Path(dest).name}: {written.error}")

    def cleanup_folder(self, folder: Path) -> bool:
        """Remove a release folder once nothing relevant is left in it. Never raises."""
        try:
            if not folder.exists() or has_relevant_files(folder):
                return False
            shutil.rmtree(folder)
            logger.info(f"Removed empty release folder: {folder}")
            return True
        except OSError as e:
            failure = CleanupFailure(f"Could not remove {folder}: {e}")
            logger.warning(f"{failure.kind}: {failure.message}")
            return False

    async def execute_batch(
        self,
        operations: list[RenameOperation],
        preferences: Optional[Preferences] = None,
        cancel_token=None,
        description: str = "File rename operation",
    ) -> BatchResult:
        """Execute operations in order. Failures are reported per item, never raised."""
        batch = BatchResult()
        batch.summary.total = len(operations)

        for op in operations:
            if is_cancelled(cancel_token):
                result = OperationResult(
                    id=op.id, success=False, old_path=op.old_path, new_path=op.new_path,
                    error="Operation cancelled", error_kind="cancelled",
                )
            else:
                try:
                    result = await self.execute(op, preferences, cancel_token)
                except MediaBotError as e:
                    logger.error(f"Rename failed for {op.old_path}: {e.message}")
                    result = OperationResult(
                        id=op.id, success=False, old_path=op.old_path, new_path=op.new_path,
                        error=e.message, error_kind=e.kind,
                    )
                except OSError as e:
                    logger.error(f"Rename failed for {op.old_path}: {e}", exc_info=True)
                    result = OperationResult(
                        id=op.id, success=False, old_path=op.old_path, new_path=op.new_path,
                        error=str(e), error_kind="os_error",
                    )

            batch.results.append(result)
            if result.success:
                batch.summary.successful += 1
                if result.metadata_written:
                    batch.summary.metadata_written += 1
            else:
                batch.summary.failed += 1
                batch.summary.errors.append(f"{Path(op.old_path).name}: {result.error}")

        logger.info(
            f"Batch complete: {batch.summary.successful}/{batch.summary.total} succeeded, "
            f"{batch.summary.failed} failed, {batch.summary.metadata_written} with metadata"
        )

        if self.journal is not None:
            actions = self.undo_actions(batch.results)
            if actions:
                operation = self.journal.record(
                    "rename", f"{description} ({batch.summary.successful} files)", actions
                )
                batch.undo_operation_id = operation.id

        return batch

    @staticmethod
    def undo_actions(results: list[OperationResult]) -> list:
        """Journal actions for the successful results, in the order they were applied."""
        actions = []
        for result in results:
            if not result.success or result.old_path == result.new_path:
                continue
            actions.append(RenameAction(
                old_path=result.old_path, new_path=result.new_path, file_id=result.id
            ))
            for old, new in result.companions:
                actions.append(MoveAction(old_path=old, new_path=new, file_id=result.id))
            if result.metadata_written and (result.backup_path or result.old_metadata):
                actions.append(MetadataAction(
                    file_path=result.new_path,
                    old_metadata=result.old_metadata,
                    backup_path=result.backup_path,
                ))
        return actions

    def restore_backups(self, folder: str) -> list[dict]:
        """Move every ``*.backup`` under ``folder`` back over its original."""
        results = []
        for backup in sorted(Path(folder).rglob(f"*{BACKUP_SUFFIX}")):
            original = backup.with_name(backup.name[: -len(BACKUP_SUFFIX)])
            try:
                os.replace(backup, original)
            except OSError as e:
                logger.error(f"Failed to restore {backup}: {e}")
                results.append({"success": False, "backup_path": str(backup), "error": str(e)})
                continue
            logger.info(f"Restored backup: {original.name}")
            results.append({"success": True, "backup_path": str(backup), "restored_path": str(original)})
        return results
