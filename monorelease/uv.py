"""Package manager and package index operations.

Builds and uploads go through the ``uv`` CLI; whether a version is visible
on PyPI is answered by the PyPI JSON API.
"""

from __future__ import annotations

import os
import tempfile
import time
from pathlib import Path

import requests

from .errors import ManifestError
from .shell import call, debug, note

PYPI_JSON_URL = "https://pypi.org/pypi"
REQUEST_TIMEOUT = 10
PUBLISH_TIMEOUT = 300.0
POLL_INTERVAL = 1.0


def update_lock(workspace_root: Path, dry_run: bool) -> None:
    """Refresh uv.lock after manifest versions changed.

    Raises:
        ManifestError: If ``uv lock`` fails.
    """
    if not call(["uv", "lock"], cwd=workspace_root, dry_run=dry_run):
        raise ManifestError(f"`uv lock` failed in {workspace_root}")


def publish(package_dir: Path, verify: bool, registry: str | None, dry_run: bool) -> bool:
    """Build a package and upload it.

    With ``verify`` the wheel is built from the sdist, which proves the sdist
    is complete; otherwise both are built straight from the source tree.

    Args:
        package_dir: Directory holding the package's pyproject.toml.
        verify: Build the wheel from the sdist.
        registry: Name of a ``[[tool.uv.index]]`` to publish to; None for PyPI.
        dry_run: Only print the commands.

    Returns:
        True if both build and upload succeeded.
    """
    with tempfile.TemporaryDirectory(prefix="monorelease-") as out_dir:
        build = ["uv", "build", str(package_dir), "--out-dir", out_dir]
        if not verify:
            build += ["--sdist", "--wheel"]
        if not call(build, cwd=package_dir, dry_run=dry_run):
            return False

        upload = ["uv", "publish"]
        if registry:
            upload += ["--index", registry]
        upload.append(f"{out_dir}/*")
        return call(upload, cwd=package_dir, dry_run=dry_run)


def is_published(name: str, version: str) -> bool:
    """Check whether ``name==version`` exists on PyPI.

    Args:
        name: Distribution name.
        version: PEP 440 normalized version.
    """
    url = f"{PYPI_JSON_URL}/{name}/{version}/json"
    try:
        res = requests.get(url, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        debug(f"PyPI lookup for {name} {version} failed: {exc}")
        return False
    return res.status_code == 200


def wait_for_publish(
    name: str,
    version: str,
    timeout: float = PUBLISH_TIMEOUT,
    dry_run: bool = False,
) -> bool:
    """Poll PyPI until ``name==version`` is visible.

    After the version appears, waits an extra ``PUBLISH_GRACE_SLEEP`` seconds
    if that environment variable is set, since the simple index and CDN can
    lag behind the JSON API.

    Returns:
        False if the version did not show up within ``timeout`` seconds.
    """
    if dry_run:
        return True

    deadline = time.monotonic() + timeout
    logged = False
    while not is_published(name, version):
        if time.monotonic() >= deadline:
            return False
        if not logged:
            note(f"Waiting for {name} {version} to become available on PyPI...")
            logged = True
        time.sleep(POLL_INTERVAL)

    grace = _grace_sleep()
    if grace > 0:
        note(f"Waiting an additional {grace} seconds for PyPI to update its indexes...")
        time.sleep(grace)
    return True


def _grace_sleep() -> int:
    try:
        return int(os.environ.get("PUBLISH_GRACE_SLEEP", "0"))
    except ValueError:
        return 0
