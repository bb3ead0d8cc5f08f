"""Error taxonomy shared by the rename pipeline.

Services raise these internally. Anything that processes a batch catches them
and turns them into per-item results, so no error crosses a batch boundary.
"""


class MediaBotError(Exception):
    """Base class for all pipeline errors."""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class ParseAmbiguity(MediaBotError):
    """No filename pattern matched strongly enough."""

    kind = "parse_ambiguity"


class ResolverUnavailable(MediaBotError):
    """Provider credentials are missing; no request was made."""

    kind = "resolver_unavailable"


class ResolverNetworkError(MediaBotError):
    """Transient transport or HTTP error while talking to a provider."""

    kind = "resolver_network"


class ResolverNoMatch(MediaBotError):
    """The provider answered but returned zero results."""

    kind = "no_match"


class SourceMissing(MediaBotError):
    kind = "source_missing"


class PathConflict(MediaBotError):
    """The destination path already exists."""

    kind = "destination_exists"


class DirectoryCreateFailure(MediaBotError):
    kind = "directory_create"


class SubprocessFailure(MediaBotError):
    """Transcoder exited non-zero or could not be spawned."""

    kind = "subprocess"

    def __init__(self, message: str = "", exit_code=None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class CleanupFailure(MediaBotError):
    """Best-effort folder cleanup failed. Never fails the parent operation."""

    kind = "cleanup"


class OperationCancelled(MediaBotError):
    kind = "cancelled"


class UndoRefused(MediaBotError):
    """The journal entry does not exist or was already undone."""

    kind = "not_undoable"
