from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class TreeMergeError(Exception):
    """Base exception for errors in the treemerge package."""

    def __str__(self) -> str:
        return self.__class__.__name__


@dataclass(frozen=True)
class ConfigError(TreeMergeError):
    """Raised when the resolved configuration cannot be used."""


@dataclass(frozen=True)
class ScanError(TreeMergeError):
    """Raised when the directory tree cannot be scanned."""

    path: Path
    message: str = "The path cannot be scanned."

    def __str__(self) -> str:
        return f"{self.message} ({self.path})"


@dataclass(frozen=True)
class InvalidRootError(ConfigError, ScanError):
    """Raised when the root does not exist or is not a directory."""

    message: str = "treemerge only operates on directories"


@dataclass(frozen=True)
class InvalidPatternError(ConfigError):
    """Raised when a glob pattern cannot be compiled."""

    pattern: str
    message: str = "Invalid glob pattern"

    def __str__(self) -> str:
        return f"{self.message}: {self.pattern!r}"


@dataclass(frozen=True)
class AbortedByUserError(TreeMergeError):
    """Raised when a risk threshold is exceeded and the user declines to proceed."""

    reasons: tuple[str, ...] = ()
    message: str = "Aborted by user"

    def __str__(self) -> str:
        if not self.reasons:
            return self.message
        return f"{self.message} ({'; '.join(self.reasons)})"


@dataclass(frozen=True)
class MergeIOError(TreeMergeError):
    """Raised when reading a source file or writing an output chunk fails."""

    path: Path
    reason: str = ""
    message: str = "I/O failure during merge"

    def __str__(self) -> str:
        if not self.reason:
            return f"{self.message}: {self.path}"
        return f"{self.message}: {self.path}: {self.reason}"


@dataclass(frozen=True)
class NoMatchError(TreeMergeError):
    """Raised when filtering leaves no file to merge."""

    root: Path
    message: str = "No text files matched criteria"

    def __str__(self) -> str:
        return f"{self.message} under {self.root}"
