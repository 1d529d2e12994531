from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Protocol

from pydantic import BaseModel, ConfigDict, Field

from treemerge.config import CHUNK_SEPARATOR, HeaderStyle, ScanEntry
from treemerge.exceptions import MergeIOError
from treemerge.logging import logger
from treemerge.risk import estimate_output_bytes

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

READ_BLOCK_BYTES = 1024 * 1024


class ProgressObserver(Protocol):
    """Receives one event per merged file."""

    def file_merged(self, entry: ScanEntry) -> None: ...


class MergeResult(BaseModel):
    """Outcome of a merge run."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    chunks: list[Path] = Field(default_factory=list, description="Chunk files written, in order")
    files_merged: int = Field(default=0, ge=0)
    lines_written: int = Field(default=0, ge=0)
    removed_chunks: list[Path] = Field(default_factory=list, description="Stale chunks of an earlier run, deleted")


@dataclass
class ChunkState:
    """State of the chunk currently being written."""

    handle: BinaryIO
    path: Path
    index: int
    lines_written: int = 0
    ends_with_newline: bool = True
    files: list[str] = field(default_factory=list)


def display_path(rel: str) -> str:
    """Printable form of a root-relative path.

    Filenames that are not valid UTF-8 come back from the OS with surrogate
    escapes; their undecodable bytes are shown as U+FFFD.

    Args:
        rel (str): the root-relative path

    Returns:
        str: a path that always encodes to UTF-8
    """
    return rel.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def render_header(style: HeaderStyle, display: str) -> list[str]:
    """Render the header lines written before a file, blank separator included.

    Args:
        style (HeaderStyle): the configured header style
        display (str): the path shown in the header

    Returns:
        list[str]: the header lines, without line terminators
    """
    if style is HeaderStyle.PLAIN:
        return [f">>> {display}"]
    if style is HeaderStyle.HASH:
        return [f"########## {display}", ""]
    return [display, "=" * len(display), ""]


def chunk_path(output_base: Path, index: int) -> Path:
    """Name of the chunk at `index`: the base itself first, then `<stem>.part<n><suffix>`.

    Args:
        output_base (Path): the configured output path
        index (int): the zero-based chunk index

    Returns:
        Path: the chunk path, in the directory of `output_base`
    """
    if index == 0:
        return output_base
    return output_base.with_name(f"{output_base.stem}{CHUNK_SEPARATOR}{index}{output_base.suffix}")


def is_output_artifact(path: Path, output_base: Path) -> bool:
    """Check whether `path` is the output base or one of its chunks.

    Args:
        path (Path): the candidate path
        output_base (Path): the configured output path

    Returns:
        bool: True if merging `path` would merge a previous output
    """
    base = output_base.resolve()
    path = path.resolve()
    if path.parent != base.parent:
        return False
    return path.name == base.name or _chunk_index(path.name, base) is not None


def _chunk_index(name: str, output_base: Path) -> int | None:
    pattern = re.escape(output_base.stem) + re.escape(CHUNK_SEPARATOR) + r"(\d+)" + re.escape(output_base.suffix)
    m = re.fullmatch(pattern, name)
    return int(m.group(1)) if m else None


def remove_stale_chunks(output_base: Path, chunk_count: int) -> list[Path]:
    """Delete chunks of a previous run numbered past the last chunk just written.

    Args:
        output_base (Path): the configured output path
        chunk_count (int): how many chunks the current run wrote

    Raises:
        MergeIOError: if a stale chunk cannot be removed

    Returns:
        list[Path]: the removed chunk paths
    """
    removed: list[Path] = []
    parent = output_base.parent
    try:
        names = sorted(p.name for p in parent.iterdir())
    except OSError as e:
        raise MergeIOError(path=parent, reason=str(e)) from e
    for name in names:
        index = _chunk_index(name, output_base)
        if index is None or index < chunk_count:
            continue
        stale = parent / name
        try:
            stale.unlink()
        except OSError as e:
            raise MergeIOError(path=stale, reason=str(e)) from e
        logger.debug("Removed stale chunk %s", stale)
        removed.append(stale)
    return removed


def count_lines(path: Path) -> int:
    """Count the lines of a file, a last line without terminator included.

    Reads the file in 1 MiB blocks so that large files are never loaded whole.

    Args:
        path (Path): the file to count

    Returns:
        int: the number of lines
    """
    count = 0
    last = b""
    with path.open("rb") as f:
        for blk in iter(lambda: f.read(READ_BLOCK_BYTES), b""):
            count += blk.count(b"\n")
            last = blk
    if last and not last.endswith(b"\n"):
        count += 1
    return count


class MergeWriter:
    """Stream files into one or more chunk files, never splitting a file.

    The writer owns the only open output handle. A new chunk is opened when
    adding the next file (header included) would push the current chunk past
    `split_every` lines; a chunk that is still empty always takes the file.

    Usage::

        with MergeWriter(Path("out.txt"), header_style=HeaderStyle.HASH, split_every=1000) as writer:
            for entry in files:
                writer.write_file(entry)
        chunks = writer.chunks
    """

    def __init__(
        self,
        output_base: Path,
        *,
        header_style: HeaderStyle = HeaderStyle.HASH,
        split_every: int | None = None,
        observer: ProgressObserver | None = None,
    ) -> None:
        self.output_base = output_base
        self.header_style = header_style
        self.split_every = split_every
        self.observer = observer
        self.chunks: list[Path] = []
        self.files_merged = 0
        self.lines_written = 0
        self._state: ChunkState | None = None

    def __enter__(self) -> MergeWriter:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def open(self) -> None:
        """Open the first chunk. Does nothing if a chunk is already open."""
        if self._state is None:
            self._open_chunk(len(self.chunks))

    def _open_chunk(self, index: int) -> None:
        path = chunk_path(self.output_base, index)
        try:
            handle = path.open("wb")
        except OSError as e:
            raise MergeIOError(path=path, reason=str(e)) from e
        self._state = ChunkState(handle=handle, path=path, index=index)
        self.chunks.append(path)
        logger.debug("Opened chunk %s", path)

    def close(self) -> None:
        """Flush and close the current chunk, if any."""
        state, self._state = self._state, None
        if state is None:
            return
        try:
            state.handle.close()
        except OSError as e:
            raise MergeIOError(path=state.path, reason=str(e)) from e
        logger.debug("Closed chunk %s: %d lines, %d files", state.path, state.lines_written, len(state.files))

    def rotate(self) -> None:
        """Close the current chunk and open the next one."""
        index = self._state.index + 1 if self._state is not None else len(self.chunks)
        self.close()
        self._open_chunk(index)

    def _needs_rotation(self, state: ChunkState, block_lines: int) -> bool:
        if self.split_every is None or state.lines_written == 0:
            return False
        return state.lines_written + block_lines > self.split_every

    def _write(self, state: ChunkState, data: bytes) -> None:
        try:
            state.handle.write(data)
        except OSError as e:
            raise MergeIOError(path=state.path, reason=str(e)) from e

    def write_file(self, entry: ScanEntry) -> int:
        """Append one file, header first, rotating the chunk beforehand if needed.

        Args:
            entry (ScanEntry): the file to merge

        Raises:
            MergeIOError: if the source cannot be read or the chunk cannot be written

        Returns:
            int: the number of content lines written for the file
        """
        if self._state is None:
            self.open()
        try:
            file_lines = count_lines(entry.path)
        except OSError as e:
            raise MergeIOError(path=entry.path, reason=str(e)) from e
        header = render_header(self.header_style, display_path(entry.rel))

        if self._needs_rotation(self._state, len(header) + file_lines):
            self.rotate()
        state = self._state

        out = io.BytesIO()
        if not state.ends_with_newline:
            out.write(b"\n")
        for line in header:
            out.write(line.encode("utf-8") + b"\n")
        self._write(state, out.getvalue())

        last = b""
        try:
            with entry.path.open("rb") as src:
                for line in src:
                    self._write(state, line)
                    last = line
        except OSError as e:
            raise MergeIOError(path=entry.path, reason=str(e)) from e

        state.ends_with_newline = not last or last.endswith(b"\n")
        state.lines_written += len(header) + file_lines
        state.files.append(entry.rel)
        self.files_merged += 1
        self.lines_written += len(header) + file_lines
        if self.observer is not None:
            self.observer.file_merged(entry)
        return file_lines

    def result(self) -> MergeResult:
        """Summarise what has been written so far."""
        return MergeResult(chunks=list(self.chunks), files_merged=self.files_merged, lines_written=self.lines_written)


def merge_files(
    files: Sequence[ScanEntry],
    output_base: Path,
    *,
    header_style: HeaderStyle = HeaderStyle.HASH,
    split_every: int | None = None,
    observer: ProgressObserver | None = None,
) -> MergeResult:
    """Merge files, in order, into `output_base` and its chunks.

    Chunks left over from an earlier run that wrote more of them are removed,
    so the chunks on disk are exactly the ones of this run.

    Args:
        files (Sequence[ScanEntry]): the selected files, in merge order
        output_base (Path): the path of the first chunk
        header_style (HeaderStyle): the header written before each file
        split_every (int | None): the line limit per chunk; None writes a single file
        observer (ProgressObserver | None): notified after each file

    Returns:
        MergeResult: the chunks written, the stale chunks removed and the totals
    """
    with MergeWriter(
        output_base,
        header_style=header_style,
        split_every=split_every,
        observer=observer,
    ) as writer:
        for entry in files:
            writer.write_file(entry)
    removed = remove_stale_chunks(output_base, len(writer.chunks))
    return writer.result().model_copy(update={"removed_chunks": removed})


def format_dry_run_report(files: Sequence[ScanEntry]) -> str:
    """Describe what a merge would do, without writing anything.

    Args:
        files (Sequence[ScanEntry]): the selected files, in merge order

    Returns:
        str: the file count, the estimated output size and one line per file
    """
    total = sum(e.size for e in files)
    out = io.StringIO()
    out.write(f"Dry-run. Would merge {len(files)} files\n")
    out.write(f"input_bytes={total}\n")
    out.write(f"estimated_output_bytes={estimate_output_bytes(total, len(files))}\n")
    for entry in files:
        out.write(f"{display_path(entry.rel)} ({entry.size} bytes)\n")
    return out.getvalue()
