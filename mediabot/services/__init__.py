"""Services for mediabot."""

from .parser import ParserService
from .tmdb import TMDBService
from .tvdb import TVDBService
from .resolver import ResolverService
from .disambiguation import DisambiguationCoordinator
from .planner import PathPlannerService
from .executor import OperationExecutor
from .metadata_writer import MetadataWriterService
from .undo import UndoJournal
from .scanner import ScannerService
from .pipeline import RenamePipeline

__all__ = [
    "ParserService",
    "TMDBService",
    "TVDBService",
    "ResolverService",
    "DisambiguationCoordinator",
    "PathPlannerService",
    "OperationExecutor",
    "MetadataWriterService",
    "UndoJournal",
    "ScannerService",
    "RenamePipeline",
]
