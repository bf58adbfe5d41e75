"""Unit tests for BinaryLocator."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from fakes import make_executable

from clawdaunt.host.binaries import BinaryLocator, BinaryNotFoundError, resolve_shell_path


def test_find_in_search_paths(locator: BinaryLocator, bin_dir: Path) -> None:
    assert locator.find("openclaw") == str(bin_dir / "openclaw")
    assert locator.find("missing") is None


def test_bundled_dir_wins(tmp_path: Path, bin_dir: Path) -> None:
    bundled = tmp_path / "bundled"
    make_executable(bundled, "openclaw")
    locator = BinaryLocator(bundled_dir=bundled, search_paths=[str(bin_dir)])

    assert locator.find("openclaw") == str(bundled / "openclaw")
    assert locator.find("cloudflared") == str(bin_dir / "cloudflared")


def test_non_executable_ignored(tmp_path: Path) -> None:
    directory = tmp_path / "bin"
    directory.mkdir()
    (directory / "openclaw").write_text("not executable")

    assert BinaryLocator(search_paths=[str(directory)]).find("openclaw") is None


def test_require(locator: BinaryLocator) -> None:
    assert locator.require("cloudflared").endswith("cloudflared")
    with pytest.raises(BinaryNotFoundError, match="codex binary not found"):
        locator.require("codex")


def test_enriched_env(locator: BinaryLocator, bin_dir: Path) -> None:
    env = locator.enriched_env({"OPENCLAW_GATEWAY_TOKEN": "t"})

    assert env["PATH"].split(os.pathsep) == [str(bin_dir)]
    assert env["OPENCLAW_GATEWAY_TOKEN"] == "t"


def test_search_paths_deduplicated(tmp_path: Path) -> None:
    locator = BinaryLocator(search_paths=["/a", "/b", "/a"])
    assert locator.search_paths == ["/a", "/b"]


def test_detect_clis(bin_dir: Path) -> None:
    make_executable(bin_dir, "claude")
    clis = BinaryLocator(search_paths=[str(bin_dir)]).detect_clis()

    assert clis.claude is True
    assert clis.codex is False
    assert clis.openclaw is True


def test_default_search_paths_include_shell_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATH", "/own/bin")
    with patch("clawdaunt.host.binaries.resolve_shell_path", return_value=["/shell/bin"]):
        paths = BinaryLocator().search_paths

    assert "/opt/homebrew/bin" in paths
    assert paths.index("/shell/bin") < paths.index("/own/bin")


def test_resolve_shell_path_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHELL", "/definitely/not/a/shell")
    assert resolve_shell_path(timeout=1.0) == []
