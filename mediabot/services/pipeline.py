"""Preview/execute orchestration for a batch of media files."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from ..models import LibraryLog
from .disambiguation import DisambiguationCoordinator
from .executor import BatchResult, OperationExecutor
from .metadata_writer import MetadataWriterService
from .parser import ParsedCandidate, ParserService, confidence_band
from .planner import PathPlannerService, RenameOperation, build_metadata_record
from .resolver import ResolverService, build_providers
from .settings_store import SettingsProvider
from .undo import UndoJournal

logger = logging.getLogger(__name__)

# Journal shared by every request in the process
_journal: Optional[UndoJournal] = None


def get_journal() -> UndoJournal:
    """Get or create the process-wide undo journal."""
    global _journal
    if _journal is None:
        _journal = UndoJournal(writer=MetadataWriterService())
    return _journal


def reset_journal():
    global _journal
    _journal = None


@dataclass
class RenamePreview:
    """What would happen to one file, before anything is touched."""

    id: str
    original_name: str
    new_name: str
    confidence: float
    parsed: ParsedCandidate
    operation: RenameOperation
    matches: list = field(default_factory=list)
    group_key: Optional[str] = None

    @property
    def band(self) -> str:
        return confidence_band(self.confidence)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "new_name": self.new_name,
            "confidence": self.confidence,
            "band": self.band,
            "parsed": self.parsed.to_dict(),
            "operation": self.operation.to_dict(),
            "matches": [m.to_dict() for m in self.matches],
            "group_key": self.group_key,
        }


class RenamePipeline:
    """One preview session: parse, resolve, disambiguate, plan, then execute."""

    def __init__(
        self,
        settings_provider: SettingsProvider,
        resolver: Optional[ResolverService] = None,
        journal: Optional[UndoJournal] = None,
        writer: Optional[MetadataWriterService] = None,
        db: Optional[Session] = None,
        template: Optional[str] = None,
    ):
        self.settings_provider = settings_provider
        self.resolver = resolver or ResolverService(
            build_providers(settings_provider.get_api_keys()),
            primary=settings_provider.get_primary_provider(),
        )
        self.parser = ParserService()
        self.planner = PathPlannerService(template or settings_provider.get_template())
        self.writer = writer or MetadataWriterService()
        self.journal = journal if journal is not None else get_journal()
        self.executor = OperationExecutor(writer=self.writer, journal=self.journal)
        self.coordinator = DisambiguationCoordinator(self.resolver)
        self.db = db
        self.files: dict[str, dict] = {}
        self.parsed: dict[str, ParsedCandidate] = {}
        self.staged: dict[str, dict] = {}
        self.results: dict = {}

    async def close(self):
        await self.resolver.close()

    async def preview(
        self, files: list[dict], auto_resolve: bool = True, cancel_token=None
    ) -> list[RenamePreview]:
        """Parse and resolve ``files`` (dicts with id, path and name).

        Files with a staged sidecar are planned from the staged tags and
        never sent to a provider.
        """
        to_resolve = []
        for entry in files:
            file_id = entry["id"]
            self.files[file_id] = entry
            self.parsed[file_id] = self.parser.parse(entry["name"], entry.get("path"))

            staged = self.writer.check_staged(entry["path"])
            if staged is not None:
                logger.info(f"Using staged metadata for {entry['name']}")
                self.staged[file_id] = staged.to_record()
            else:
                to_resolve.append(entry)

        candidates = [self.parsed[entry["id"]] for entry in to_resolve]
        results = await self.resolver.resolve_batch(candidates, cancel_token)
        for entry, candidate, result in zip(to_resolve, candidates, results):
            self.results[entry["id"]] = result
            self.coordinator.add(entry["id"], candidate, result)

        if auto_resolve:
            await self.coordinator.auto_resolve()

        logger.info(
            f"Preview of {len(files)} files: "
            f"{len(self.coordinator.pending_groups())} series awaiting confirmation"
        )
        return self.previews()

    def previews(self) -> list[RenamePreview]:
        """Plan every file from the current selections."""
        previews = []
        for file_id, entry in self.files.items():
            candidate = self.parsed[file_id]
            record = self.staged.get(file_id)
            if record is None:
                record = build_metadata_record(candidate, self.coordinator.selection(file_id))
            operation = self.planner.plan(file_id, entry["path"], record)
            group = self.coordinator.group_for(file_id)
            result = self.results.get(file_id)
            previews.append(RenamePreview(
                id=file_id,
                original_name=entry["name"],
                new_name=Path(operation.new_path).name,
                confidence=record["confidence"],
                parsed=candidate,
                operation=operation,
                matches=list(result.matches) if result else [],
                group_key=group.key if group else None,
            ))
        return previews

    def operations(self) -> list[RenameOperation]:
        return [p.operation for p in self.previews()]

    async def resolve_group(self, key: str, provider_id: str, external_id: str):
        group = self.coordinator.groups.get(key)
        if group is None:
            raise KeyError(key)
        for match in group.matches:
            if match.provider_id == provider_id and match.external_id == str(external_id):
                return await self.coordinator.resolve(key, match)
        raise KeyError(f"{provider_id}:{external_id}")

    def skip_group(self, key: str):
        return self.coordinator.skip(key)

    async def execute(
        self, operations: Optional[list[RenameOperation]] = None, cancel_token=None
    ) -> BatchResult:
        """Execute the given operations, or the current plan when none are given."""
        if operations is None:
            operations = self.operations()
        preferences = self.settings_provider.get_preferences()
        batch = await self.executor.execute_batch(operations, preferences, cancel_token)
        if self.db is not None:
            self._log_batch(operations, batch)
        return batch

    def _log_batch(self, operations: list[RenameOperation], batch: BatchResult):
        kinds = {op.id: (op.metadata or {}).get("media_type") for op in operations}
        for result in batch.results:
            self.db.add(LibraryLog(
                action_type="rename" if result.success else "rename_failed",
                file_path=result.old_path,
                dest_path=result.new_path,
                media_type=kinds.get(result.id),
                metadata_written=result.metadata_written,
                result="success" if result.success else "failed",
                details=result.error or result.metadata_error,
            ))
        self.db.commit()
