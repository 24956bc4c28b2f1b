"""Tests for git-based changed-file discovery."""

from unittest.mock import AsyncMock

import pytest

from codenest_core.errors import DiscoveryError
from codenest_core.git.changes import GitChangeDiscovery, diff_command
from codenest_core.models import Workspace
from codenest_core.workspace import LocalFileStore
from codenest_store.models import ReviewType


class TestDiffCommand:
    def test_staged(self):
        assert diff_command(ReviewType.STAGED) == ["diff", "--cached", "--name-only", "--diff-filter=ACMR"]

    def test_commit(self):
        args = diff_command(ReviewType.COMMIT, "abc123")
        assert args[0] == "diff-tree"
        assert "--root" in args
        assert args[-1] == "abc123"

    def test_branch_uses_three_dot_range(self):
        assert diff_command(ReviewType.BRANCH, "feature", "develop")[-1] == "develop...feature"

    def test_branch_defaults_base_to_main(self):
        assert diff_command(ReviewType.BRANCH, "feature")[-1] == "main...feature"

    @pytest.mark.parametrize("mode", [ReviewType.COMMIT, ReviewType.BRANCH])
    def test_target_required(self, mode):
        with pytest.raises(DiscoveryError, match="requires"):
            diff_command(mode)


class TestGitChangeDiscovery:
    @pytest.fixture
    def workspace(self, tmp_path):
        for name in ("app.py", "logo.png", "migrations/0001.py", "web/main.ts"):
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("x")
        return Workspace(id="ws", name=tmp_path.name, path=str(tmp_path))

    @pytest.mark.asyncio
    async def test_filters_and_registers_files(self, mocker, workspace):
        output = "app.py\nlogo.png\nmigrations/0001.py\ndeleted.py\n\nweb/main.ts\n"
        run_git = mocker.patch("codenest_core.git.changes.run_git", new=AsyncMock(return_value=output))
        file_store = LocalFileStore()
        discovery = GitChangeDiscovery(file_store, exclude=["migrations/"])

        file_ids = await discovery.resolve_files(workspace, ReviewType.STAGED, "", "")

        files = [await file_store.get_file(file_id) for file_id in file_ids]
        assert [f.rel_path for f in files] == ["app.py", "web/main.ts"]
        assert [f.language for f in files] == ["python", "typescript"]
        run_git.assert_awaited_once_with(workspace.path, *diff_command(ReviewType.STAGED))

    @pytest.mark.asyncio
    async def test_commit_mode_passes_hash(self, mocker, workspace):
        run_git = mocker.patch("codenest_core.git.changes.run_git", new=AsyncMock(return_value=""))
        discovery = GitChangeDiscovery(LocalFileStore())

        assert await discovery.resolve_files(workspace, ReviewType.COMMIT, "abc123", "") == []
        assert run_git.call_args.args[-1] == "abc123"

    @pytest.mark.asyncio
    async def test_git_failure_propagates(self, mocker, workspace):
        mocker.patch(
            "codenest_core.git.changes.run_git",
            new=AsyncMock(side_effect=DiscoveryError("git diff failed: not a git repository")),
        )
        with pytest.raises(DiscoveryError, match="not a git repository"):
            await GitChangeDiscovery(LocalFileStore()).resolve_files(workspace, ReviewType.STAGED, "", "")
