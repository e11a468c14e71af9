"""Error taxonomy shared by the store, the matcher and the HTTP boundary."""


class PulseTrackError(Exception):
    """Base class for all PulseTrack errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ConstraintViolation(PulseTrackError):
    """A unique brand name or (brand, project name) pair already exists."""


class NotFound(PulseTrackError):
    """The targeted id does not exist."""


class InvalidPattern(PulseTrackError):
    """A regex rule pattern does not compile."""


class StorageUnavailable(PulseTrackError):
    """The activity log could not be opened or migrated."""


class TransientWriteFailure(PulseTrackError):
    """A single insert/update failed; the caller may retry later."""


class BadRequest(PulseTrackError):
    """A boundary request is missing a field or carries a malformed value."""
