"""Tests for git working-tree commands (git runner faked)."""
import subprocess
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from storage.exceptions import NotFoundError, ValidationError
from sync.git_workspace import GITIGNORE_CONTENT, GitWorkspace


class FakeGit:
    """Records git invocations; responses keyed by subcommand."""

    def __init__(self, responses=None):
        self.calls = []
        self.responses = responses or {}

    def __call__(self, args, cwd):
        self.calls.append(args)
        if args[0] == "init":
            (Path(cwd) / ".git").mkdir(exist_ok=True)
        returncode, stdout, stderr = self.responses.get(args[0], (0, "", ""))
        return subprocess.CompletedProcess(["git", *args], returncode, stdout, stderr)


@pytest.fixture
def work_dir(temp_dir):
    path = temp_dir / "data"
    path.mkdir()
    return path


def make_workspace(work_dir, registry, runner):
    return GitWorkspace(work_dir, registry, runner=runner)


@pytest.mark.asyncio
async def test_requires_active_github_provider(work_dir, registry, s3_config):
    """Test that git commands need an active github provider."""
    registry.add("s3", "bucket", s3_config)
    workspace = make_workspace(work_dir, registry, FakeGit())

    with pytest.raises(ValidationError):
        await workspace.init()
    with pytest.raises(ValidationError):
        workspace.write_gitignore()


@pytest.mark.asyncio
async def test_commands_require_initialized_repo(work_dir, registry, github_config):
    """Test NotFoundError before init."""
    registry.add("github", "repo", github_config)
    workspace = make_workspace(work_dir, registry, FakeGit())

    for command in (workspace.commit, workspace.push, workspace.pull, workspace.status):
        with pytest.raises(NotFoundError):
            await command()


@pytest.mark.asyncio
async def test_init_new_repository(work_dir, registry, github_config):
    """Test the init sequence for a fresh directory."""
    registry.add("github", "repo", github_config)
    git = FakeGit()
    workspace = make_workspace(work_dir, registry, git)

    result = await workspace.init()

    assert result.success
    assert "initialized" in result.message
    assert git.calls[0] == ["init"]
    assert ["remote", "add", "origin", "https://ghp_test@github.com/octo/data.git"] in git.calls
    assert ["fetch", "origin"] in git.calls
    assert ["checkout", "-b", "main"] in git.calls
    assert git.calls[-1] == ["pull", "origin", "main", "--allow-unrelated-histories"]


@pytest.mark.asyncio
async def test_init_existing_repository_repoints_remote(work_dir, registry, github_config):
    """Test that an existing .git only gets its origin replaced."""
    (work_dir / ".git").mkdir()
    registry.add("github", "repo", github_config)
    git = FakeGit()

    result = await make_workspace(work_dir, registry, git).init()

    assert result.success
    assert "remote updated" in result.message
    assert ["init"] not in git.calls
    assert git.calls[0] == ["remote", "remove", "origin"]


@pytest.mark.asyncio
async def test_init_tolerates_network_failure_on_pull(work_dir, registry, github_config):
    """Test that an unreachable remote still reports success."""
    registry.add("github", "repo", github_config)
    git = FakeGit({"fetch": (128, "", "fatal: unable to access 'https://***@github.com/octo/data.git/': Could not resolve host")})

    result = await make_workspace(work_dir, registry, git).init()

    assert result.success
    assert "network" in result.message
    assert "ghp_test" not in result.output


@pytest.mark.asyncio
async def test_commit_nothing_to_commit_is_success(work_dir, registry, github_config):
    """Test that a clean tree is not an error."""
    (work_dir / ".git").mkdir()
    registry.add("github", "repo", github_config)
    git = FakeGit({"commit": (1, "On branch main\nnothing to commit, working tree clean\n", "")})

    result = await make_workspace(work_dir, registry, git).commit("msg")

    assert result.success
    assert result.message == "No changes to commit."
    assert git.calls == [["add", "."], ["commit", "-m", "msg"]]


@pytest.mark.asyncio
async def test_commit_default_message(work_dir, registry, github_config):
    """Test the generated commit message."""
    (work_dir / ".git").mkdir()
    registry.add("github", "repo", github_config)
    git = FakeGit({"commit": (0, "[main abc123] sync\n 1 file changed\n", "")})

    result = await make_workspace(work_dir, registry, git).commit()

    assert result.success
    assert git.calls[1][2].startswith("CloudSync data sync: ")


@pytest.mark.asyncio
async def test_push_rejected_when_behind(work_dir, registry, github_config):
    """Test push rejection message."""
    (work_dir / ".git").mkdir()
    registry.add("github", "repo", github_config)
    git = FakeGit({"push": (1, "", " ! [rejected] main -> main (fetch first)\nhint: Updates were rejected because the remote contains work; your branch is behind\n")})

    result = await make_workspace(work_dir, registry, git).push()

    assert not result.success
    assert "behind" in result.message
    assert git.calls == [["push", "origin", "main"]]


@pytest.mark.asyncio
async def test_status_returns_output(work_dir, registry, github_config):
    """Test git status passthrough."""
    (work_dir / ".git").mkdir()
    registry.add("github", "repo", github_config)
    git = FakeGit({"status": (0, "On branch main\n", "")})

    result = await make_workspace(work_dir, registry, git).status()

    assert result.success
    assert result.output == "On branch main\n"


def test_write_gitignore_only_once(work_dir, registry, github_config):
    """Test .gitignore creation is skipped when one exists."""
    registry.add("github", "repo", github_config)
    workspace = make_workspace(work_dir, registry, FakeGit())

    first = workspace.write_gitignore()
    (work_dir / ".gitignore").write_text("custom\n")
    second = workspace.write_gitignore()

    assert first.success and "created" in first.message
    assert second.success and "already exists" in second.message
    assert (work_dir / ".gitignore").read_text() == "custom\n"
    assert "node_modules/" in GITIGNORE_CONTENT
