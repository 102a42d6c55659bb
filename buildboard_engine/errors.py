from pathlib import Path
from typing import Union


class BuildboardError(Exception):
    """Base class for all errors raised by the build registry and reclaimer."""


class InvalidJob(BuildboardError):
    """The job descriptor failed validation. Raised before any side effect."""


class CorruptLedger(BuildboardError):
    """An existing builds.json could not be read or parsed."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Ledger {path} is corrupt: {reason}")


class PersistError(BuildboardError):
    """Writing builds.json failed. The on-disk ledger state is unspecified."""

    def __init__(self, path: Path, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"Could not persist ledger {path}: {cause}")


class FilesystemError(BuildboardError):
    """Inspecting, listing or deleting an entry failed during reclamation."""

    def __init__(self, path: Union[str, Path], cause: BaseException):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Filesystem operation failed for {self.path}: {cause}")
