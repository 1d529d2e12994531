"""Pre-scan risk assessment.

The aggregates of the scan are compared with fixed thresholds. Exceeding one
is never fatal by itself: the user is asked to confirm, unless confirmation is
disabled or the run is a dry run, in which case only warnings are emitted.
"""

from __future__ import annotations

import sys
from functools import reduce
from typing import TYPE_CHECKING, TextIO

from treemerge.config import (
    HEADER_OVERHEAD_BYTES,
    MAX_DEPTH,
    MAX_ESTIMATED_OUTPUT_BYTES,
    MAX_FILE_COUNT,
    MAX_SINGLE_FILE_BYTES,
    MAX_TOTAL_INPUT_BYTES,
    RiskReport,
)
from treemerge.exceptions import AbortedByUserError
from treemerge.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from treemerge.config import ScanEntry

AFFIRMATIVE_ANSWERS = frozenset({"y", "yes"})
PARTIAL_REPORT_SIZE = 4096


def estimate_output_bytes(total_size_bytes: int, file_count: int) -> int:
    """Approximate the merged output size: input bytes plus a fixed header cost per file."""
    return total_size_bytes + HEADER_OVERHEAD_BYTES * file_count


def _partial_report(entries: Sequence[ScanEntry]) -> RiskReport:
    files = [e for e in entries if e.is_file]
    total = sum(e.size for e in files)
    return RiskReport(
        file_count=len(files),
        total_size_bytes=total,
        max_depth=max((e.depth for e in entries), default=0),
        oversized_file_count=sum(1 for e in files if e.size >= MAX_SINGLE_FILE_BYTES),
        estimated_output_bytes=estimate_output_bytes(total, len(files)),
    )


def build_risk_report(entries: Sequence[ScanEntry]) -> RiskReport:
    """Aggregate scan entries into a risk report.

    Entries are summarised slice by slice and the partial reports combined,
    so the aggregation never shares a running counter.

    Args:
        entries (Sequence[ScanEntry]): the full scan result

    Returns:
        RiskReport: aggregate statistics over every scanned file and directory
    """
    partials = (
        _partial_report(entries[i : i + PARTIAL_REPORT_SIZE]) for i in range(0, len(entries), PARTIAL_REPORT_SIZE)
    )
    return reduce(RiskReport.combine, partials, RiskReport())


def exceeded_thresholds(report: RiskReport) -> list[str]:
    """List the risk thresholds a report exceeds.

    Args:
        report (RiskReport): the pre-scan aggregates

    Returns:
        list[str]: one human-readable reason per exceeded threshold, empty if none
    """
    reasons: list[str] = []
    if report.file_count > MAX_FILE_COUNT:
        reasons.append(f"{report.file_count} files scanned (limit {MAX_FILE_COUNT})")
    if report.oversized_file_count:
        reasons.append(
            f"{report.oversized_file_count} file(s) of {MAX_SINGLE_FILE_BYTES // (1024 * 1024)} MB or more",
        )
    if report.total_size_bytes > MAX_TOTAL_INPUT_BYTES:
        reasons.append(f"total input of {report.total_size_bytes} bytes (limit {MAX_TOTAL_INPUT_BYTES})")
    if report.estimated_output_bytes > MAX_ESTIMATED_OUTPUT_BYTES:
        reasons.append(
            f"estimated output of {report.estimated_output_bytes} bytes (limit {MAX_ESTIMATED_OUTPUT_BYTES})",
        )
    if report.max_depth > MAX_DEPTH:
        reasons.append(f"directory depth {report.max_depth} (limit {MAX_DEPTH})")
    return reasons


def assess_risk(
    report: RiskReport,
    *,
    no_confirm: bool = False,
    dry_run: bool = False,
    stdin: TextIO | None = None,
    stderr: TextIO | None = None,
) -> list[str]:
    """Warn about exceeded thresholds and ask for confirmation when required.

    Args:
        report (RiskReport): the pre-scan aggregates
        no_confirm (bool): proceed after the warnings without prompting
        dry_run (bool): only warn; a dry run never prompts
        stdin (TextIO | None): where the answer is read from. Defaults to sys.stdin.
        stderr (TextIO | None): where warnings and the prompt go. Defaults to sys.stderr.

    Raises:
        AbortedByUserError: if the answer is anything but "y" or "yes", EOF included

    Returns:
        list[str]: the exceeded thresholds, empty when the run is within limits
    """
    reasons = exceeded_thresholds(report)
    if not reasons:
        return reasons

    stdin = stdin if stdin is not None else sys.stdin
    stderr = stderr if stderr is not None else sys.stderr
    for reason in reasons:
        logger.warning("Risk threshold exceeded: %s", reason)
        stderr.write(f"warning: {reason}\n")
    stderr.flush()

    if no_confirm or dry_run:
        return reasons

    stderr.write("Proceed anyway? [y/N]: ")
    stderr.flush()
    answer = stdin.readline()
    if answer.strip().lower() not in AFFIRMATIVE_ANSWERS:
        raise AbortedByUserError(reasons=tuple(reasons))
    return reasons
