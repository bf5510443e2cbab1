"""Tests for kitdeploy.rewrite -- placeholder substitution and asset copy."""

from __future__ import annotations

from pathlib import Path

from kitdeploy.layout import PLACEHOLDER_TOKEN
from kitdeploy.rewrite import copy_asset, count_placeholders, rewrite_in_place, rewrite_placeholders


class TestRewritePlaceholders:
    def test_every_occurrence_replaced(self) -> None:
        text = f"a {PLACEHOLDER_TOKEN}x b {PLACEHOLDER_TOKEN}y"
        assert rewrite_placeholders(text, "/home/u/.config/opencode/") == (
            "a /home/u/.config/opencode/x b /home/u/.config/opencode/y"
        )

    def test_replacement_taken_literally(self) -> None:
        prefix = "C:\\Users\\me\\g<0>\\1/"
        result = rewrite_placeholders(f"see {PLACEHOLDER_TOKEN}doc", prefix)
        assert result == f"see {prefix}doc"

    def test_count(self) -> None:
        assert count_placeholders(f"{PLACEHOLDER_TOKEN}{PLACEHOLDER_TOKEN}") == 2
        assert count_placeholders("@gsd-opencode without slash") == 0


class TestCopyAsset:
    def test_text_asset_rewritten(self, tmp_path: Path) -> None:
        source = tmp_path / "src.md"
        source.write_text(f"x {PLACEHOLDER_TOKEN}a\n", encoding="utf-8")
        target = tmp_path / "out" / "deep" / "dst.md"
        assert copy_asset(source, target, "./.opencode/") is True
        assert target.read_text(encoding="utf-8") == "x ./.opencode/a\n"

    def test_line_endings_preserved(self, tmp_path: Path) -> None:
        source = tmp_path / "src.md"
        source.write_bytes(f"one {PLACEHOLDER_TOKEN}a\r\ntwo\r\n".encode())
        target = tmp_path / "dst.md"
        copy_asset(source, target, "./.opencode/", atomic=True)
        assert target.read_bytes() == b"one ./.opencode/a\r\ntwo\r\n"

    def test_tokenless_text_copied_unchanged(self, tmp_path: Path) -> None:
        source = tmp_path / "src.md"
        source.write_bytes(b"plain\n")
        target = tmp_path / "dst.md"
        assert copy_asset(source, target, "./.opencode/") is False
        assert target.read_bytes() == b"plain\n"

    def test_non_text_file_never_rewritten(self, tmp_path: Path) -> None:
        source = tmp_path / "data.json"
        source.write_text(f'{{"ref": "{PLACEHOLDER_TOKEN}x"}}', encoding="utf-8")
        target = tmp_path / "copy.json"
        assert copy_asset(source, target, "./.opencode/") is False
        assert target.read_bytes() == source.read_bytes()

    def test_undecodable_markdown_copied_raw(self, tmp_path: Path) -> None:
        source = tmp_path / "bad.md"
        source.write_bytes(b"\xff\xfe" + PLACEHOLDER_TOKEN.encode())
        target = tmp_path / "out.md"
        assert copy_asset(source, target, "./.opencode/", atomic=True) is False
        assert target.read_bytes() == source.read_bytes()


def test_rewrite_in_place(tmp_path: Path) -> None:
    path = tmp_path / "a.md"
    path.write_text(f"{PLACEHOLDER_TOKEN}x and {PLACEHOLDER_TOKEN}y", encoding="utf-8")
    assert rewrite_in_place(path, "/abs/") == 2
    assert path.read_text(encoding="utf-8") == "/abs/x and /abs/y"
    assert rewrite_in_place(path, "/abs/") == 0
