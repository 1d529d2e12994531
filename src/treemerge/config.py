from __future__ import annotations

from enum import StrEnum, auto
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

_ = Path()


class HeaderStyle(StrEnum):
    """Style of the header written before each merged file.

    The lines of each style, blank separator included, are rendered by
    `output_construction.render_header` and count toward the split limit.
    """

    PLAIN = auto()
    HASH = auto()
    UNDERLINE = auto()


class FileCategory(StrEnum):
    """Category of a known file signature, as used by the text sniffer."""

    TEXT = auto()
    IMAGE = auto()
    ARCHIVE = auto()
    DOCUMENT = auto()
    EXECUTABLE = auto()
    AUDIO = auto()
    VIDEO = auto()
    FONT = auto()
    DATABASE = auto()


SNIFF_BYTES = 8192
HEADER_OVERHEAD_BYTES = 64
CHUNK_SEPARATOR = ".part"
DEFAULT_OUTPUT_SUFFIX = ".txt"
DEFAULT_OUTPUT_STEM = "treemerge"

# Risk thresholds, evaluated on the pre-scan aggregates.
MAX_FILE_COUNT = 20_000
MAX_SINGLE_FILE_BYTES = 200 * 1024 * 1024
MAX_TOTAL_INPUT_BYTES = 4 * 1024 * 1024 * 1024
MAX_ESTIMATED_OUTPUT_BYTES = 1024 * 1024 * 1024
MAX_DEPTH = 20

DEFAULT_EXCLUDES: tuple[str, ...] = (
    # VCS
    ".git/",
    ".svn/",
    ".hg/",
    # build dirs
    "target/",
    "dist/",
    "build/",
    "out/",
    # caches
    "__pycache__/",
    ".cache/",
    ".mypy_cache/",
    ".pytest_cache/",
    ".ruff_cache/",
    ".venv/",
    ".idea/",
    ".vscode/",
    "node_modules/",
    # docs output
    "_site/",
    "_book/",
    "docs/_build/",
    # boilerplate
    "LICENSE",
    "LICENSE.*",
    "COPYING",
    "NOTICE",
    # lockfiles
    "*.lock",
    "package-lock.json",
    "pnpm-lock.yaml",
    # binaries
    "*.pyc",
    "*.pyo",
    "*.o",
    "*.a",
    "*.so",
    "*.dylib",
    "*.dll",
    "*.exe",
    "*.class",
)

# Magic-byte prefixes checked before the UTF-8 fallback. Order matters:
# the first matching prefix wins.
SIGNATURES: tuple[tuple[bytes, FileCategory], ...] = (
    (b"\xef\xbb\xbf", FileCategory.TEXT),
    (b"<?xml", FileCategory.TEXT),
    (b"<!DOCTYPE html", FileCategory.TEXT),
    (b"<!doctype html", FileCategory.TEXT),
    (b"<html", FileCategory.TEXT),
    (b"{\\rtf", FileCategory.TEXT),
    (b"#!", FileCategory.TEXT),
    (b"\x89PNG\r\n\x1a\n", FileCategory.IMAGE),
    (b"\xff\xd8\xff", FileCategory.IMAGE),
    (b"GIF87a", FileCategory.IMAGE),
    (b"GIF89a", FileCategory.IMAGE),
    (b"II*\x00", FileCategory.IMAGE),
    (b"MM\x00*", FileCategory.IMAGE),
    (b"\x00\x00\x01\x00", FileCategory.IMAGE),
    (b"%PDF-", FileCategory.DOCUMENT),
    (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", FileCategory.DOCUMENT),
    (b"PK\x03\x04", FileCategory.ARCHIVE),
    (b"PK\x05\x06", FileCategory.ARCHIVE),
    (b"\x1f\x8b", FileCategory.ARCHIVE),
    (b"BZh", FileCategory.ARCHIVE),
    (b"\xfd7zXZ\x00", FileCategory.ARCHIVE),
    (b"7z\xbc\xaf\x27\x1c", FileCategory.ARCHIVE),
    (b"Rar!\x1a\x07", FileCategory.ARCHIVE),
    (b"\x28\xb5\x2f\xfd", FileCategory.ARCHIVE),
    (b"\x7fELF", FileCategory.EXECUTABLE),
    (b"MZ", FileCategory.EXECUTABLE),
    (b"\xca\xfe\xba\xbe", FileCategory.EXECUTABLE),
    (b"\xcf\xfa\xed\xfe", FileCategory.EXECUTABLE),
    (b"\xce\xfa\xed\xfe", FileCategory.EXECUTABLE),
    (b"\x00asm", FileCategory.EXECUTABLE),
    (b"ID3", FileCategory.AUDIO),
    (b"fLaC", FileCategory.AUDIO),
    (b"OggS", FileCategory.AUDIO),
    (b"\x1aE\xdf\xa3", FileCategory.VIDEO),
    (b"wOFF", FileCategory.FONT),
    (b"wOF2", FileCategory.FONT),
    (b"SQLite format 3\x00", FileCategory.DATABASE),
)


class ScanEntry(BaseModel):
    """One filesystem entry reachable from the scanned root.

    Attributes:
        path: Absolute path to the entry on disk.
        rel: Path relative to the scanned root, with POSIX separators.
        is_file: Whether the entry is a regular file (False for directories).
        size: Size in bytes; always 0 for directories.
        depth: Distance from the root; direct children of the root have depth 1.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path = Field(..., description="Absolute path")
    rel: str = Field(..., description="Path relative to the scanned root")
    is_file: bool = Field(..., description="Regular file (True) or directory (False)")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    depth: int = Field(..., ge=0, description="Depth from the root")


class RiskReport(BaseModel):
    """Aggregate statistics of a pre-scan, used to decide whether to ask for confirmation."""

    model_config = ConfigDict(frozen=True)

    file_count: int = Field(default=0, ge=0)
    total_size_bytes: int = Field(default=0, ge=0)
    max_depth: int = Field(default=0, ge=0)
    oversized_file_count: int = Field(default=0, ge=0)
    estimated_output_bytes: int = Field(default=0, ge=0)

    def combine(self, other: RiskReport) -> RiskReport:
        """Merge two partial reports computed over disjoint sets of entries.

        Args:
            other (RiskReport): the partial report to merge with this one

        Returns:
            RiskReport: a new report covering both sets of entries
        """
        return RiskReport(
            file_count=self.file_count + other.file_count,
            total_size_bytes=self.total_size_bytes + other.total_size_bytes,
            max_depth=max(self.max_depth, other.max_depth),
            oversized_file_count=self.oversized_file_count + other.oversized_file_count,
            estimated_output_bytes=self.estimated_output_bytes + other.estimated_output_bytes,
        )
