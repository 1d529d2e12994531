from __future__ import annotations

import os
from pathlib import Path

import pytest

from treemerge.config import SNIFF_BYTES, FileCategory
from treemerge.exceptions import ConfigError, InvalidRootError, ScanError
from treemerge.file_manipulation import (
    is_text_file,
    is_utf8,
    match_signature,
    normalize_extensions,
    relpath,
    scan_tree,
    select_files,
    sniff_text,
)
from treemerge.filters import GlobFilter


def make_tree(root: Path, files: dict[str, bytes]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


@pytest.mark.unit
def test_relpath_uses_posix_separators(tmp_path: Path) -> None:
    assert relpath(tmp_path / "a" / "b.txt", tmp_path) == "a/b.txt"


@pytest.mark.unit
def test_scan_tree_reports_files_and_directories_with_depth(tmp_path: Path) -> None:
    make_tree(tmp_path, {"a.txt": b"abc", "sub/b.txt": b"hello", "sub/deep/c.txt": b""})

    entries = scan_tree(tmp_path)

    summary = [(e.rel, e.is_file, e.size, e.depth) for e in entries]
    assert summary == [
        ("a.txt", True, 3, 1),
        ("sub", False, 0, 1),
        ("sub/b.txt", True, 5, 2),
        ("sub/deep", False, 0, 2),
        ("sub/deep/c.txt", True, 0, 3),
    ]
    assert all(e.path.is_absolute() for e in entries)


@pytest.mark.unit
def test_scan_tree_order_is_stable(tmp_path: Path) -> None:
    make_tree(tmp_path, {name: b"x" for name in ["zeta.txt", "alpha.txt", "mid/one.txt", "Beta.txt"]})

    first = [e.rel for e in scan_tree(tmp_path)]
    second = [e.rel for e in scan_tree(tmp_path)]

    assert first == second
    assert first == ["Beta.txt", "alpha.txt", "mid", "mid/one.txt", "zeta.txt"]


@pytest.mark.unit
def test_scan_tree_rejects_missing_root(tmp_path: Path) -> None:
    missing = tmp_path / "missing"

    with pytest.raises(InvalidRootError) as exc_info:
        scan_tree(missing)

    assert isinstance(exc_info.value, ConfigError)
    assert isinstance(exc_info.value, ScanError)
    assert str(missing) in str(exc_info.value)


@pytest.mark.unit
def test_scan_tree_rejects_file_root(tmp_path: Path) -> None:
    file_root = tmp_path / "file.txt"
    file_root.write_text("x", encoding="utf-8")

    with pytest.raises(InvalidRootError):
        scan_tree(file_root)


@pytest.mark.unit
@pytest.mark.skipif(not hasattr(os, "symlink") or os.name == "nt", reason="symlinks required")
def test_scan_tree_skips_symlinks_by_default(tmp_path: Path) -> None:
    make_tree(tmp_path, {"real/a.txt": b"a"})
    (tmp_path / "link").symlink_to(tmp_path / "real", target_is_directory=True)
    (tmp_path / "alias.txt").symlink_to(tmp_path / "real" / "a.txt")

    rels = [e.rel for e in scan_tree(tmp_path)]

    assert rels == ["real", "real/a.txt"]


@pytest.mark.unit
@pytest.mark.skipif(not hasattr(os, "symlink") or os.name == "nt", reason="symlinks required")
def test_scan_tree_follows_symlinks_without_looping(tmp_path: Path) -> None:
    make_tree(tmp_path, {"real/a.txt": b"a"})
    (tmp_path / "real" / "loop").symlink_to(tmp_path, target_is_directory=True)
    (tmp_path / "alias.txt").symlink_to(tmp_path / "real" / "a.txt")

    entries = scan_tree(tmp_path, follow_symlinks=True)

    rels = [e.rel for e in entries]
    assert rels == ["alias.txt", "real", "real/a.txt"]
    assert entries[0].is_file
    assert entries[0].size == 1


@pytest.mark.unit
@pytest.mark.skipif(os.name == "nt" or (hasattr(os, "geteuid") and os.geteuid() == 0), reason="needs POSIX non-root")
def test_scan_tree_skips_unreadable_directories(tmp_path: Path) -> None:
    make_tree(tmp_path, {"ok/a.txt": b"a", "locked/b.txt": b"b"})
    locked = tmp_path / "locked"
    locked.chmod(0)
    try:
        rels = [e.rel for e in scan_tree(tmp_path)]
    finally:
        locked.chmod(0o755)

    assert rels == ["locked", "ok", "ok/a.txt"]


@pytest.mark.unit
def test_normalize_extensions_lowercases_and_strips_dots() -> None:
    assert normalize_extensions([".PY", " md ", "", "."]) == frozenset({"py", "md"})


@pytest.mark.unit
def test_allowlist_is_authoritative(tmp_path: Path) -> None:
    make_tree(
        tmp_path,
        {"notes.txt": b"plain text\n", "blob.PY": b"\x89PNG\r\n\x1a\n\x00\x00", "Makefile": b"all:\n"},
    )

    assert not is_text_file(tmp_path / "notes.txt", ["py"])
    assert is_text_file(tmp_path / "blob.PY", ["py"])
    assert not is_text_file(tmp_path / "Makefile", ["py"])


@pytest.mark.unit
def test_allowlist_does_not_read_content(tmp_path: Path) -> None:
    assert is_text_file(tmp_path / "does-not-exist.md", [".md"])


@pytest.mark.unit
def test_empty_file_is_not_text(tmp_path: Path) -> None:
    empty = tmp_path / "empty.txt"
    empty.write_bytes(b"")

    assert not sniff_text(empty)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("content", "expected"),
    [
        (b"print('ok')\n", True),
        ("café naïve\n".encode(), True),
        (b"\xef\xbb\xbfwith bom\n", True),
        (b"#!/bin/sh\necho hi\n", True),
        (b"\x89PNG\r\n\x1a\nrest", False),
        (b"%PDF-1.7\n", False),
        (b"MZ\x90\x00\x03", False),
        (b"\xff\xfe\x00\x00garbage", False),
    ],
)
def test_sniff_text(tmp_path: Path, content: bytes, expected: bool) -> None:
    path = tmp_path / "sample"
    path.write_bytes(content)

    assert sniff_text(path) is expected


@pytest.mark.unit
def test_sniff_text_accepts_multibyte_sequence_cut_by_prefix(tmp_path: Path) -> None:
    path = tmp_path / "long.txt"
    path.write_bytes(b"a" * (SNIFF_BYTES - 1) + "é".encode() + b"tail\n")

    assert sniff_text(path)


@pytest.mark.unit
def test_is_utf8_rejects_truncated_complete_input() -> None:
    assert is_utf8("é".encode()[:1], complete=False)
    assert not is_utf8("é".encode()[:1], complete=True)


@pytest.mark.unit
def test_match_signature_categories() -> None:
    assert match_signature(b"<?xml version='1.0'?>") is FileCategory.TEXT
    assert match_signature(b"PK\x03\x04") is FileCategory.ARCHIVE
    assert match_signature(b"hello") is None


@pytest.mark.unit
def test_unreadable_file_is_not_text(tmp_path: Path) -> None:
    assert not is_text_file(tmp_path / "missing.txt")


@pytest.mark.unit
def test_select_files_applies_globs_then_classifier_in_scan_order(tmp_path: Path) -> None:
    make_tree(
        tmp_path,
        {
            "b.txt": b"b\n",
            "a.txt": b"a\n",
            "img.png": b"\x89PNG\r\n\x1a\n\x00",
            "skip/c.txt": b"c\n",
            ".git/config": b"[core]\n",
        },
    )
    entries = scan_tree(tmp_path)
    glob_filter = GlobFilter.compile(excludes=["skip/"])

    selected = select_files(entries, glob_filter, workers=2)

    assert [e.rel for e in selected] == ["a.txt", "b.txt"]


@pytest.mark.unit
def test_select_files_with_all_files_keeps_vcs_config(tmp_path: Path) -> None:
    make_tree(tmp_path, {".git/config": b"[core]\n", "a.txt": b"a\n"})
    entries = scan_tree(tmp_path)

    selected = select_files(entries, GlobFilter.compile(all_files=True))

    assert [e.rel for e in selected] == [".git/config", "a.txt"]
