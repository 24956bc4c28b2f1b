"""Changed-file discovery through the local ``git`` binary."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from codenest_core.errors import DiscoveryError
from codenest_core.utils.code import is_code_file, is_excluded
from codenest_store.models import ReviewType

if TYPE_CHECKING:
    from codenest_core.models import Workspace
    from codenest_core.workspace import LocalFileStore

logger = logging.getLogger(__name__)


def diff_command(mode: ReviewType, target: str = "", base: str = "") -> list[str]:
    """git arguments listing the added, copied, modified or renamed files of ``mode``."""
    if mode is ReviewType.STAGED:
        return ["diff", "--cached", "--name-only", "--diff-filter=ACMR"]
    if mode is ReviewType.COMMIT:
        if not target:
            raise DiscoveryError("commit review requires a commit hash")
        return ["diff-tree", "--root", "--no-commit-id", "--name-only", "-r", "--diff-filter=ACMR", target]
    if mode is ReviewType.BRANCH:
        if not target:
            raise DiscoveryError("branch review requires a branch name")
        return ["diff", "--name-only", "--diff-filter=ACMR", f"{base or 'main'}...{target}"]
    raise DiscoveryError(f"unsupported review mode: {mode!r}")


async def run_git(cwd: str, *args: str) -> str:
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise DiscoveryError("git executable not found")
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        raise DiscoveryError(f"git {args[0]} failed: {message or proc.returncode}")
    return stdout.decode("utf-8", errors="replace")


class GitChangeDiscovery:
    def __init__(self, file_store: LocalFileStore, exclude=()):
        self.file_store = file_store
        self.exclude = list(exclude)

    async def resolve_files(self, workspace: Workspace, mode: ReviewType, target: str, base: str) -> list[str]:
        output = await run_git(workspace.path, *diff_command(mode, target, base))
        file_ids = []
        for rel_path in (line.strip() for line in output.splitlines()):
            if not rel_path:
                continue
            if is_excluded(rel_path, self.exclude) or not is_code_file(rel_path):
                logger.info("Skipping: %s", rel_path)
                continue
            if not (Path(workspace.path) / rel_path).is_file():
                logger.info("Skipping %s: not present in the working tree", rel_path)
                continue
            file_ids.append(self.file_store.register(workspace, rel_path).id)
        logger.debug("Discovered %d changed file(s) for %s review", len(file_ids), mode.value)
        return file_ids
