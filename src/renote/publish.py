"""Publishing a rendered note as a GitHub release through the gh CLI.

Only used with `renote generate --publish`. renote never talks to the
releases API itself; `gh` already handles authentication (it reads
GITHUB_TOKEN) and asset uploads.
"""

from __future__ import annotations

import glob
import shutil
import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path

from renote.errors import PublishError, RuntimeDependencyError
from renote.logging_config import get_logger

logger = get_logger(__name__)

PUBLISH_DEPENDENCIES = ("gh",)


def check_runtime_dependencies(binaries: Iterable[str] = PUBLISH_DEPENDENCIES) -> None:
    """Fail early if an external binary is missing from PATH."""
    missing = [name for name in binaries if shutil.which(name) is None]
    if missing:
        raise RuntimeDependencyError(f"Required on PATH but not found: {', '.join(missing)}")


def expand_artifacts(patterns: Iterable[str]) -> list[Path]:
    """Resolve artifact globs to absolute file paths, in pattern order.

    Each pattern's matches are sorted; a file matched twice is uploaded once.
    """
    paths: list[Path] = []
    for pattern in patterns:
        matches = sorted(glob.glob(pattern, recursive=True))
        if not matches:
            logger.warning("artifact_pattern_unmatched", pattern=pattern)
        for match in matches:
            path = Path(match).resolve()
            if path.is_file() and path not in paths:
                paths.append(path)
    return paths


def release_command(
    repo: str,
    tag: str,
    notes_path: Path,
    title: str,
    target: str | None = None,
    draft: bool = False,
    prerelease: bool = False,
    artifacts: Sequence[Path] = (),
) -> list[str]:
    args = [
        "gh", "release", "create", tag,
        "--repo", repo,
        "--notes-file", str(notes_path),
        "--title", title,
    ]
    if target:
        args += ["--target", target]
    if draft:
        args.append("--draft")
    if prerelease:
        args.append("--prerelease")
    args += [str(path) for path in artifacts]
    return args


def publish_release(
    repo: str,
    tag: str,
    notes_path: Path,
    title: str,
    target: str | None = None,
    draft: bool = False,
    prerelease: bool = False,
    artifacts: Iterable[str] = (),
) -> str:
    """Create the GitHub release and return the URL gh prints.

    Args:
        artifacts: Glob patterns of files to upload as release assets

    Raises:
        RuntimeDependencyError: gh is not installed
        PublishError: gh exited non-zero
    """
    check_runtime_dependencies()
    files = expand_artifacts(artifacts)
    args = release_command(repo, tag, notes_path, title, target, draft, prerelease, files)
    logger.info(
        "publishing_release",
        repo=repo,
        tag=tag,
        draft=draft,
        prerelease=prerelease,
        artifacts=len(files),
    )

    proc = subprocess.run(args, capture_output=True, text=True, check=False)
    if proc.returncode != 0:
        raise PublishError(
            f"gh release create failed ({proc.returncode}): {proc.stderr.strip()}"
        )

    url = proc.stdout.strip()
    logger.info("release_published", repo=repo, tag=tag, url=url)
    return url
