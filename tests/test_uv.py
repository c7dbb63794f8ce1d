"""Tests for monorelease.uv."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from monorelease import uv
from monorelease.errors import ManifestError


class TestIsPublished:
    @patch("monorelease.uv.requests.get")
    def test_found(self, mock_get: MagicMock) -> None:
        mock_get.return_value.status_code = 200

        assert uv.is_published("pkg-a", "1.1.0rc1")
        mock_get.assert_called_once_with(
            "https://pypi.org/pypi/pkg-a/1.1.0rc1/json", timeout=uv.REQUEST_TIMEOUT
        )

    @patch("monorelease.uv.requests.get")
    def test_not_found(self, mock_get: MagicMock) -> None:
        mock_get.return_value.status_code = 404
        assert not uv.is_published("pkg-a", "9.9.9")

    @patch("monorelease.uv.requests.get", side_effect=requests.ConnectionError("offline"))
    def test_network_error(self, mock_get: MagicMock) -> None:
        assert not uv.is_published("pkg-a", "1.0.0")


class TestWaitForPublish:
    @patch("monorelease.uv.time.sleep")
    @patch("monorelease.uv.is_published", side_effect=[False, False, True])
    def test_polls_until_visible(
        self, mock_published: MagicMock, mock_sleep: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("PUBLISH_GRACE_SLEEP", raising=False)

        assert uv.wait_for_publish("pkg-a", "1.0.0", timeout=60)
        assert mock_sleep.call_count == 2

    @patch("monorelease.uv.time.sleep")
    @patch("monorelease.uv.is_published", return_value=True)
    def test_grace_sleep(
        self, mock_published: MagicMock, mock_sleep: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PUBLISH_GRACE_SLEEP", "5")

        assert uv.wait_for_publish("pkg-a", "1.0.0")
        mock_sleep.assert_called_once_with(5)

    @patch("monorelease.uv.time.sleep")
    @patch("monorelease.uv.is_published", return_value=False)
    def test_timeout(self, mock_published: MagicMock, mock_sleep: MagicMock) -> None:
        assert not uv.wait_for_publish("pkg-a", "1.0.0", timeout=0)

    @patch("monorelease.uv.is_published")
    def test_dry_run(self, mock_published: MagicMock) -> None:
        assert uv.wait_for_publish("pkg-a", "1.0.0", dry_run=True)
        mock_published.assert_not_called()


class TestPublish:
    @patch("monorelease.uv.call", return_value=True)
    def test_build_then_upload(self, mock_call: MagicMock, tmp_path: Path) -> None:
        assert uv.publish(tmp_path, verify=True, registry=None, dry_run=False)

        build, upload = (c.args[0] for c in mock_call.call_args_list)
        assert build[:3] == ["uv", "build", str(tmp_path)]
        assert "--sdist" not in build
        assert upload[:2] == ["uv", "publish"]
        assert upload[-1].endswith("/*")

    @patch("monorelease.uv.call", return_value=True)
    def test_no_verify_and_registry(self, mock_call: MagicMock, tmp_path: Path) -> None:
        uv.publish(tmp_path, verify=False, registry="internal", dry_run=True)

        build, upload = (c.args[0] for c in mock_call.call_args_list)
        assert build[-2:] == ["--sdist", "--wheel"]
        assert upload[2:4] == ["--index", "internal"]

    @patch("monorelease.uv.call", return_value=False)
    def test_build_failure_skips_upload(self, mock_call: MagicMock, tmp_path: Path) -> None:
        assert not uv.publish(tmp_path, verify=True, registry=None, dry_run=False)
        assert mock_call.call_count == 1


class TestUpdateLock:
    @patch("monorelease.uv.call", return_value=True)
    def test_runs_uv_lock(self, mock_call: MagicMock, tmp_path: Path) -> None:
        uv.update_lock(tmp_path, dry_run=True)
        mock_call.assert_called_once_with(["uv", "lock"], cwd=tmp_path, dry_run=True)

    @patch("monorelease.uv.call", return_value=False)
    def test_failure(self, mock_call: MagicMock, tmp_path: Path) -> None:
        with pytest.raises(ManifestError):
            uv.update_lock(tmp_path, dry_run=False)
