"""treemerge: concatenate the text files of a directory tree.

Overview
--------
The tree under ROOT is scanned once. The aggregates of the scan are checked
against fixed risk thresholds (file count, file size, total size, estimated
output size, depth); exceeding one asks for confirmation unless
``--no-confirm`` or ``--dry-run`` is given. Files then go through the glob
rules (includes win over excludes, built-in excludes apply unless
``--all-files``) and the text classifier (``--ext`` allowlist, or content
sniffing). The survivors are written, each behind a header, into the output
file, split into ``.partN`` chunks every ``--split-every`` lines without ever
splitting a file.

Usage
-----
Run ``treemerge --help`` for full options. Common examples:
    - Merge a project into ``myproject.txt``:
        treemerge ./myproject

    - Python sources only, underlined headers, 5000-line chunks:
        treemerge ./myproject -e py --header-style underline --split-every 5000

    - See what would be merged:
        treemerge ./myproject -x "tests/**" --dry-run
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from treemerge import __version__
from treemerge.config import HeaderStyle
from treemerge.exceptions import (
    AbortedByUserError,
    ConfigError,
    MergeIOError,
    NoMatchError,
    TreeMergeError,
)
from treemerge.file_manipulation import scan_tree, select_files
from treemerge.filters import GlobFilter
from treemerge.logging import logger, setup_logging
from treemerge.output_construction import (
    MergeResult,
    format_dry_run_report,
    is_output_artifact,
    merge_files,
)
from treemerge.progress import RichProgressObserver
from treemerge.risk import assess_risk, build_risk_report
from treemerge.settings import Settings, env_default

if TYPE_CHECKING:
    from collections.abc import Sequence

    from treemerge.config import ScanEntry

EXIT_CODES: tuple[tuple[type[TreeMergeError], int], ...] = (
    (ConfigError, 2),
    (NoMatchError, 3),
    (AbortedByUserError, 4),
    (MergeIOError, 5),
)


def positive_int(value: str) -> int:
    """Argparse type for strictly positive integers.

    Args:
        value (str): the raw command-line value

    Raises:
        argparse.ArgumentTypeError: if the value is not an integer above zero

    Returns:
        int: the parsed value
    """
    try:
        number = int(value)
    except ValueError as e:
        msg = f"expected a positive integer, got {value!r}"
        raise argparse.ArgumentTypeError(msg) from e
    if number <= 0:
        msg = f"expected a positive integer, got {value!r}"
        raise argparse.ArgumentTypeError(msg)
    return number


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse command-line arguments into settings.

    Defaults for ``--header-style`` and ``--log-file`` can be set with the
    ``TREEMERGE_HEADER_STYLE`` and ``TREEMERGE_LOG_FILE`` environment
    variables, or in the nearest ``.env`` file.

    Args:
        argv (Sequence[str] | None): the arguments, without the program name

    Returns:
        Settings: the resolved settings
    """
    p = argparse.ArgumentParser(
        prog="treemerge",
        description="Concatenate all text files in a directory tree.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("root", type=Path, help="Root directory to process (must be a directory).")
    p.add_argument("-o", "--output", type=Path, default=None, help="Output file; defaults to <dirname>.txt.")
    p.add_argument(
        "-i",
        "--include",
        action="append",
        default=[],
        help="Include glob, overrides every exclusion (repeatable).",
    )
    p.add_argument("-x", "--exclude", action="append", default=[], help="Exclude glob (repeatable).")
    p.add_argument(
        "-e",
        "--ext",
        action="append",
        default=[],
        help="Only include files with this extension (repeatable).",
    )
    p.add_argument("--all-files", action="store_true", help="Disable built-in excludes.")
    p.add_argument(
        "--split-every",
        type=positive_int,
        default=None,
        help="Line count after which to split output (never splits inside a file).",
    )
    p.add_argument(
        "--header-style",
        type=HeaderStyle,
        choices=list(HeaderStyle),
        default=env_default("HEADER_STYLE", HeaderStyle.HASH.value),
        help="Header style for file separators.",
    )
    p.add_argument("--dry-run", action="store_true", help="Dry-run mode (no files written).")
    p.add_argument("--no-confirm", action="store_true", help="Skip confirmation prompts.")
    p.add_argument("--follow-symlinks", action="store_true", help="Follow symlinked directories.")
    p.add_argument("--verbose", action="store_true", help="Verbose logging.")
    p.add_argument("--log-file", type=str, default=env_default("LOG_FILE"), help="Log file path.")
    p.add_argument(
        "--workers",
        type=positive_int,
        default=None,
        help="Threads used for text detection.",
    )
    args = p.parse_args(argv)
    return Settings(**vars(args))


def collect_files(
    settings: Settings,
    *,
    stdin: TextIO | None = None,
    stderr: TextIO | None = None,
) -> list[ScanEntry]:
    """Scan, assess and filter the tree described by `settings`.

    Glob patterns are compiled before the scan so a malformed pattern fails
    before any traversal.

    Args:
        settings (Settings): the resolved settings
        stdin (TextIO | None): where a confirmation answer is read from
        stderr (TextIO | None): where warnings and the prompt are written

    Raises:
        NoMatchError: if no file survives the filters

    Returns:
        list[ScanEntry]: the files to merge, in scan order
    """
    glob_filter = GlobFilter.compile(settings.include, settings.exclude, all_files=settings.all_files)
    entries = scan_tree(settings.root, follow_symlinks=settings.follow_symlinks)
    report = build_risk_report(entries)
    logger.info(
        "Scanned %s: %d files, %d bytes, depth %d",
        settings.root,
        report.file_count,
        report.total_size_bytes,
        report.max_depth,
    )
    assess_risk(report, no_confirm=settings.no_confirm, dry_run=settings.dry_run, stdin=stdin, stderr=stderr)

    output_base = settings.output_base
    entries = [e for e in entries if not (e.is_file and is_output_artifact(e.path, output_base))]
    files = select_files(entries, glob_filter, settings.ext, workers=settings.workers)
    if not files:
        raise NoMatchError(root=settings.root)
    return files


def run(
    settings: Settings,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
    progress: bool = False,
) -> MergeResult | None:
    """Run one merge, or print the dry-run report.

    Args:
        settings (Settings): the resolved settings
        stdin (TextIO | None): where a confirmation answer is read from
        stdout (TextIO | None): where the dry-run report goes. Defaults to sys.stdout.
        stderr (TextIO | None): where warnings and the prompt are written
        progress (bool): show a progress bar while merging

    Returns:
        MergeResult | None: what was written, or None for a dry run
    """
    files = collect_files(settings, stdin=stdin, stderr=stderr)
    if settings.dry_run:
        (stdout or sys.stdout).write(format_dry_run_report(files))
        return None

    if not progress:
        result = merge_files(
            files,
            settings.output_base,
            header_style=settings.header_style,
            split_every=settings.split_every,
        )
    else:
        with RichProgressObserver(total=len(files)) as observer:
            result = merge_files(
                files,
                settings.output_base,
                header_style=settings.header_style,
                split_every=settings.split_every,
                observer=observer,
            )
    # logged once the progress bar has left stderr
    logger.info(
        "Merged %d files into %d chunk(s), %d lines, %d stale chunk(s) removed",
        result.files_merged,
        len(result.chunks),
        result.lines_written,
        len(result.removed_chunks),
    )
    return result


def exit_code_for(error: TreeMergeError) -> int:
    """Map an error to the process exit code."""
    for cls, code in EXIT_CODES:
        if isinstance(error, cls):
            return code
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    setup_logging(settings.log_file or None, verbose=settings.verbose)

    try:
        result = run(settings, progress=sys.stderr.isatty() and not settings.verbose)
    except TreeMergeError as e:
        logger.error("Merge failed: %s", e)
        print(f"treemerge: {e}", file=sys.stderr)
        return exit_code_for(e)

    if result is not None:
        chunks = ", ".join(str(c) for c in result.chunks)
        print(f"Wrote {chunks} files={result.files_merged} lines={result.lines_written}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
