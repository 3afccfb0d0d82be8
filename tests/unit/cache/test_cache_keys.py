from __future__ import annotations

import hashlib
from pathlib import Path

from persistent_filter.hashing import cache_key_for_contents, hash_for_dir, sha256_file


def test_cache_key_depends_on_contents_and_path() -> None:
    base = cache_key_for_contents("hello", "a.txt")

    assert cache_key_for_contents("hello", "a.txt") == base
    assert cache_key_for_contents("hello!", "a.txt") != base
    assert cache_key_for_contents("hello", "b.txt") != base


def test_cache_key_treats_text_and_utf8_bytes_alike() -> None:
    assert cache_key_for_contents("héllo", "a.txt") == cache_key_for_contents(
        "héllo".encode("utf-8"), "a.txt"
    )


def test_cache_key_separates_contents_from_path() -> None:
    assert cache_key_for_contents("ab", "c") != cache_key_for_contents("a", "bc")


def test_sha256_file_matches_hashlib(tmp_path: Path) -> None:
    path = tmp_path / "data.bin"
    path.write_bytes(b"x" * 300_000)

    assert sha256_file(path) == hashlib.sha256(b"x" * 300_000).hexdigest()


def test_hash_for_dir_changes_with_file_contents(tmp_path: Path) -> None:
    (tmp_path / "pkg").mkdir()
    module = tmp_path / "pkg" / "module.py"
    module.write_text("VALUE = 1\n", encoding="utf-8")
    before = hash_for_dir(tmp_path)

    assert hash_for_dir(tmp_path) == before

    module.write_text("VALUE = 2\n", encoding="utf-8")

    assert hash_for_dir(tmp_path) != before


def test_hash_for_dir_ignores_bytecode_and_vcs_dirs(tmp_path: Path) -> None:
    (tmp_path / "module.py").write_text("VALUE = 1\n", encoding="utf-8")
    before = hash_for_dir(tmp_path)

    (tmp_path / "__pycache__").mkdir()
    (tmp_path / "__pycache__" / "module.cpython-311.pyc").write_bytes(b"\x00")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref: main\n", encoding="utf-8")
    (tmp_path / "stale.pyc").write_bytes(b"\x00")

    assert hash_for_dir(tmp_path) == before
