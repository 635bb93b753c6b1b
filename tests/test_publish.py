"""Tests for publishing through the gh CLI.

subprocess.run and shutil.which are patched; nothing is executed.

Run with: pytest tests/test_publish.py -v
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from renote.errors import PublishError, RuntimeDependencyError
from renote.publish import (
    check_runtime_dependencies,
    expand_artifacts,
    publish_release,
    release_command,
)

NOTES = Path("/tmp/release-note.md")


class TestReleaseCommand:
    def test_minimal(self) -> None:
        assert release_command("longhorn/longhorn", "v1.6.0", NOTES, "Longhorn v1.6.0") == [
            "gh", "release", "create", "v1.6.0",
            "--repo", "longhorn/longhorn",
            "--notes-file", "/tmp/release-note.md",
            "--title", "Longhorn v1.6.0",
        ]

    def test_all_flags(self) -> None:
        args = release_command(
            "longhorn/longhorn", "v1.6.0-rc1", NOTES, "Longhorn v1.6.0-rc1",
            target="v1.6.x", draft=True, prerelease=True,
        )
        assert args[-4:] == ["--target", "v1.6.x", "--draft", "--prerelease"]

    def test_artifacts_follow_flags(self) -> None:
        args = release_command(
            "longhorn/longhorn", "v1.6.0", NOTES, "Longhorn v1.6.0",
            draft=True, artifacts=[Path("/dist/longhorn.yaml"), Path("/dist/images.txt")],
        )
        assert args[-3:] == ["--draft", "/dist/longhorn.yaml", "/dist/images.txt"]


class TestExpandArtifacts:
    def test_globs_sorted_and_deduplicated(self, tmp_path: Path) -> None:
        for name in ("longhorn.yaml", "images.txt", "charts.tgz"):
            (tmp_path / name).write_text("x")
        (tmp_path / "deploy").mkdir()

        paths = expand_artifacts([str(tmp_path / "*"), str(tmp_path / "longhorn.yaml")])

        assert [p.name for p in paths] == ["charts.tgz", "images.txt", "longhorn.yaml"]

    def test_recursive_pattern(self, tmp_path: Path) -> None:
        nested = tmp_path / "dist" / "linux"
        nested.mkdir(parents=True)
        (nested / "longhorn-manager").write_text("x")

        paths = expand_artifacts([str(tmp_path / "**" / "longhorn-*")])
        assert paths == [(nested / "longhorn-manager").resolve()]

    def test_unmatched_pattern_is_skipped(self, tmp_path: Path) -> None:
        assert expand_artifacts([str(tmp_path / "*.tgz")]) == []


class TestPublishRelease:
    def test_success_returns_url(self) -> None:
        done = subprocess.CompletedProcess(
            args=[], returncode=0,
            stdout="https://github.com/longhorn/longhorn/releases/tag/v1.6.0\n", stderr="",
        )
        with (
            patch("renote.publish.shutil.which", return_value="/usr/bin/gh"),
            patch("renote.publish.subprocess.run", return_value=done) as run,
        ):
            url = publish_release("longhorn/longhorn", "v1.6.0", NOTES, "Longhorn v1.6.0")

        assert url == "https://github.com/longhorn/longhorn/releases/tag/v1.6.0"
        assert run.call_args.args[0][:4] == ["gh", "release", "create", "v1.6.0"]

    def test_uploads_artifacts(self, tmp_path: Path) -> None:
        (tmp_path / "longhorn.yaml").write_text("kind: List\n")
        done = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
        with (
            patch("renote.publish.shutil.which", return_value="/usr/bin/gh"),
            patch("renote.publish.subprocess.run", return_value=done) as run,
        ):
            publish_release(
                "longhorn/longhorn", "v1.6.0", NOTES, "Longhorn v1.6.0",
                artifacts=[str(tmp_path / "*.yaml")],
            )

        assert run.call_args.args[0][-1] == str((tmp_path / "longhorn.yaml").resolve())

    def test_gh_failure(self) -> None:
        failed = subprocess.CompletedProcess(
            args=[], returncode=1, stdout="", stderr="HTTP 422: tag already exists\n",
        )
        with (
            patch("renote.publish.shutil.which", return_value="/usr/bin/gh"),
            patch("renote.publish.subprocess.run", return_value=failed),
            pytest.raises(PublishError, match="tag already exists"),
        ):
            publish_release("longhorn/longhorn", "v1.6.0", NOTES, "Longhorn v1.6.0")

    def test_gh_missing(self) -> None:
        with (
            patch("renote.publish.shutil.which", return_value=None),
            patch("renote.publish.subprocess.run") as run,
            pytest.raises(RuntimeDependencyError, match="gh"),
        ):
            publish_release("longhorn/longhorn", "v1.6.0", NOTES, "Longhorn v1.6.0")
        run.assert_not_called()

    def test_check_lists_every_missing_binary(self) -> None:
        with (
            patch("renote.publish.shutil.which", return_value=None),
            pytest.raises(RuntimeDependencyError, match="gh, git"),
        ):
            check_runtime_dependencies(("gh", "git"))
