from __future__ import annotations

import codecs
import os
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from treemerge.config import SIGNATURES, SNIFF_BYTES, FileCategory, ScanEntry
from treemerge.exceptions import InvalidRootError
from treemerge.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from treemerge.filters import GlobFilter


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def _sorted_children(directory: Path) -> list[os.DirEntry[str]]:
    try:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda d: d.name)
    except OSError as e:
        logger.debug("Skipping unreadable directory %s: %s", directory, e)
        return []


def _check_root(root: Path) -> Path:
    if not root.exists():
        raise InvalidRootError(path=root, message="Root path does not exist")
    if not root.is_dir():
        raise InvalidRootError(path=root)
    return root.resolve()


def scan_tree(root: Path, *, follow_symlinks: bool = False) -> list[ScanEntry]:
    """Walk the tree under `root` and collect every directory and regular file.

    Children are visited in name order, depth first, so repeated runs over an
    unchanged tree produce the same sequence. Unreadable entries are skipped.
    Without `follow_symlinks` every symlink is skipped; with it, symlinked
    directories are descended once per (device, inode) so cycles terminate.

    Args:
        root (Path): the directory to walk
        follow_symlinks (bool): whether to follow symlinked files and directories

    Raises:
        InvalidRootError: if `root` does not exist or is not a directory

    Returns:
        list[ScanEntry]: the entries found under `root`, root excluded
    """
    root = _check_root(Path(root))
    root_stat = root.stat()
    visited: set[tuple[int, int]] = {(root_stat.st_dev, root_stat.st_ino)}
    entries: list[ScanEntry] = []
    stack: list[tuple[Iterator[os.DirEntry[str]], int]] = [(iter(_sorted_children(root)), 1)]

    while stack:
        children, depth = stack[-1]
        child = next(children, None)
        if child is None:
            stack.pop()
            continue

        path = Path(child.path)
        try:
            if child.is_symlink() and not follow_symlinks:
                logger.debug("Skipping symlink %s", path)
                continue
            is_dir = child.is_dir(follow_symlinks=True)
            is_file = not is_dir and child.is_file(follow_symlinks=True)
            st = child.stat(follow_symlinks=True)
        except OSError as e:
            logger.debug("Skipping unreadable entry %s: %s", path, e)
            continue

        rel = relpath(path, root)
        if is_dir:
            key = (st.st_dev, st.st_ino)
            if key in visited:
                logger.debug("Skipping already visited directory %s", path)
                continue
            visited.add(key)
            entries.append(ScanEntry(path=path, rel=rel, is_file=False, size=0, depth=depth))
            stack.append((iter(_sorted_children(path)), depth + 1))
        elif is_file:
            entries.append(ScanEntry(path=path, rel=rel, is_file=True, size=st.st_size, depth=depth))

    logger.debug("Scanned %s: %d entries", root, len(entries))
    return entries


def normalize_extensions(exts: Iterable[str]) -> frozenset[str]:
    """Normalize an extension allowlist: lower case, no leading dot, no blanks.

    Args:
        exts (Iterable[str]): extensions such as "py", ".MD" or " txt "

    Returns:
        frozenset[str]: the normalized extensions
    """
    return frozenset(e.strip().lstrip(".").lower() for e in exts if e and e.strip().lstrip("."))


def has_allowed_extension(path: Path, allowed: frozenset[str]) -> bool:
    """Check the last suffix of `path` against a normalized allowlist.

    Args:
        path (Path): the file path to check
        allowed (frozenset[str]): the output of `normalize_extensions`

    Returns:
        bool: True if the file has an extension and it is allowed
    """
    suffix = path.suffix.lstrip(".").lower()
    return bool(suffix) and suffix in allowed


def match_signature(prefix: bytes) -> FileCategory | None:
    """Look up the category of a known file signature.

    Args:
        prefix (bytes): the first bytes of a file

    Returns:
        FileCategory | None: the category of the first matching signature, or None
    """
    for magic, category in SIGNATURES:
        if prefix.startswith(magic):
            return category
    return None


def is_utf8(prefix: bytes, *, complete: bool) -> bool:
    """Check whether bytes decode as UTF-8.

    Args:
        prefix (bytes): the bytes to decode
        complete (bool): whether `prefix` is the whole file; when False a
            multi-byte sequence cut at the end is accepted

    Returns:
        bool: True if the bytes are valid UTF-8
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        decoder.decode(prefix, final=complete)
    except UnicodeDecodeError:
        return False
    return True


def sniff_text(path: Path, nbytes: int = SNIFF_BYTES) -> bool:
    """Decide from its first bytes whether a file is text.

    A known signature decides first; otherwise the prefix must be valid UTF-8.
    Empty files are not text.

    Args:
        path (Path): the file to sniff
        nbytes (int, optional): number of bytes to read. Defaults to SNIFF_BYTES.

    Returns:
        bool: True if the file looks like text
    """
    with path.open("rb") as f:
        prefix = f.read(nbytes)
    if not prefix:
        return False
    category = match_signature(prefix)
    if category is not None:
        return category is FileCategory.TEXT
    return is_utf8(prefix, complete=len(prefix) < nbytes)


def is_text_file(path: Path, allowed_exts: Iterable[str] = ()) -> bool:
    """Decide whether a file should be merged as text.

    A non-empty allowlist is authoritative and no content is read. Otherwise
    the file is sniffed; a file that cannot be read is not text.

    Args:
        path (Path): the file to classify
        allowed_exts (Iterable[str]): extension allowlist, possibly empty

    Returns:
        bool: True if the file is text
    """
    allowed = normalize_extensions(allowed_exts)
    if allowed:
        return has_allowed_extension(path, allowed)
    try:
        return sniff_text(path)
    except OSError as e:
        logger.warning("Cannot read %s for text detection: %s", path, e)
        return False


def select_files(
    entries: Sequence[ScanEntry],
    glob_filter: GlobFilter,
    allowed_exts: Iterable[str] = (),
    *,
    workers: int | None = None,
) -> list[ScanEntry]:
    """Apply the glob rules then the text classifier to the scanned files.

    Classification runs on a thread pool; the result keeps the scan order.

    Args:
        entries (Sequence[ScanEntry]): the scan result
        glob_filter (GlobFilter): the compiled glob rules
        allowed_exts (Iterable[str]): extension allowlist, possibly empty
        workers (int | None): size of the classification pool; None lets the
            executor decide

    Returns:
        list[ScanEntry]: the files to merge, in scan order
    """
    candidates = [e for e in entries if e.is_file and glob_filter.is_selected(e.rel)]
    classify = partial(is_text_file, allowed_exts=normalize_extensions(allowed_exts))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        verdicts = list(executor.map(classify, [e.path for e in candidates]))
    selected = [e for e, keep in zip(candidates, verdicts, strict=True) if keep]
    logger.debug("Selected %d of %d candidate files", len(selected), len(candidates))
    return selected
