"""Tests for monorelease.git."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

from monorelease import git


def _proc(returncode: int = 0, stdout: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout, stderr="")


class TestQueries:
    @patch("monorelease.git.git", return_value=" M pyproject.toml\n?? new.py")
    def test_is_dirty(self, mock_git: MagicMock, tmp_path: Path) -> None:
        assert git.is_dirty(tmp_path) == [" M pyproject.toml", "?? new.py"]

    @patch("monorelease.git.git", return_value="")
    def test_clean(self, mock_git: MagicMock, tmp_path: Path) -> None:
        assert git.is_dirty(tmp_path) == []

    @patch("monorelease.git.git_proc")
    def test_tag_exists(self, mock_proc: MagicMock, tmp_path: Path) -> None:
        mock_proc.return_value = _proc(0, "abc123\n")
        assert git.tag_exists(tmp_path, "v1.0.0")
        mock_proc.assert_called_once_with(
            "rev-parse", "--verify", "--quiet", "refs/tags/v1.0.0^{commit}", cwd=tmp_path
        )

        mock_proc.return_value = _proc(1)
        assert not git.tag_exists(tmp_path, "v9.9.9")

    @patch("monorelease.git.git", return_value="pkg-a-v1.2.0\npkg-a-v1.1.0")
    def test_find_last_tag(self, mock_git: MagicMock, tmp_path: Path) -> None:
        assert git.find_last_tag(tmp_path, "pkg-a-v*") == "pkg-a-v1.2.0"

    @patch("monorelease.git.top_level")
    @patch("monorelease.git.git_proc")
    def test_changed_files(
        self, mock_proc: MagicMock, mock_top: MagicMock, tmp_path: Path
    ) -> None:
        mock_top.return_value = tmp_path
        mock_proc.return_value = _proc(1, "packages/pkg-a/src.py\n")

        assert git.changed_files(tmp_path, "v1.0.0") == [tmp_path / "packages/pkg-a/src.py"]

        mock_proc.return_value = _proc(0)
        assert git.changed_files(tmp_path, "v1.0.0") == []

        mock_proc.return_value = _proc(128)
        assert git.changed_files(tmp_path, "missing") is None

    @patch("monorelease.git.git_proc")
    def test_commits_since(self, mock_proc: MagicMock, tmp_path: Path) -> None:
        mock_proc.return_value = _proc(
            0,
            "abc1234\x1ffeat: add x\x1ffeat: add x\n\nDetails.\n\x1e\n"
            "def5678\x1ffix: crash\x1ffix: crash\n\x1e\n",
        )

        assert git.commits_since(tmp_path, "v1.0.0") == [
            ("abc1234", "feat: add x", "feat: add x\n\nDetails."),
            ("def5678", "fix: crash", "fix: crash"),
        ]

    @patch("monorelease.git.git_proc", return_value=_proc(128))
    def test_commits_since_unknown_ref(self, mock_proc: MagicMock, tmp_path: Path) -> None:
        assert git.commits_since(tmp_path, "missing") is None

    @patch("monorelease.git.git")
    @patch("monorelease.git.git_proc")
    def test_behind_remote(
        self, mock_proc: MagicMock, mock_git: MagicMock, tmp_path: Path
    ) -> None:
        mock_proc.side_effect = [_proc(0, "remote-sha"), _proc(0, "local-sha")]
        mock_git.return_value = "local-sha"

        assert git.is_behind_remote(tmp_path, "origin", "main")

    @patch("monorelease.git.git_proc", return_value=_proc(1))
    def test_missing_remote_branch(
        self, mock_proc: MagicMock, tmp_path: Path
    ) -> None:
        assert not git.is_behind_remote(tmp_path, "origin", "main")
        assert not git.is_local_unchanged(tmp_path, "origin", "main")


class TestMutations:
    @patch("monorelease.git.call", return_value=True)
    def test_signed_commit(self, mock_call: MagicMock, tmp_path: Path) -> None:
        assert git.commit_all(tmp_path, "chore: release", True, dry_run=True)
        mock_call.assert_called_once_with(
            ["git", "commit", "-S", "-am", "chore: release"], cwd=tmp_path, dry_run=True
        )

    @patch("monorelease.git.call", return_value=True)
    def test_annotated_tag(self, mock_call: MagicMock, tmp_path: Path) -> None:
        git.tag(tmp_path, "v1.0.0", "release 1.0.0", sign=True, dry_run=False)
        mock_call.assert_called_once_with(
            ["git", "tag", "v1.0.0", "-a", "-m", "release 1.0.0", "-s"], cwd=tmp_path, dry_run=False
        )

    @patch("monorelease.git.call", return_value=True)
    def test_lightweight_tag(self, mock_call: MagicMock, tmp_path: Path) -> None:
        git.tag(tmp_path, "v1.0.0", "", sign=True, dry_run=False)
        assert mock_call.call_args.args[0] == ["git", "tag", "v1.0.0"]

    @patch("monorelease.git.call", return_value=True)
    def test_push_options(self, mock_call: MagicMock, tmp_path: Path) -> None:
        git.push(tmp_path, "origin", ["main", "v1.0.0"], ["ci.skip"], dry_run=False)
        mock_call.assert_called_once_with(
            ["git", "push", "--push-option", "ci.skip", "origin", "main", "v1.0.0"],
            cwd=tmp_path,
            dry_run=False,
        )

    @patch("monorelease.git.call")
    def test_nothing_to_push(self, mock_call: MagicMock, tmp_path: Path) -> None:
        assert git.push(tmp_path, "origin", [], [], dry_run=False)
        mock_call.assert_not_called()
