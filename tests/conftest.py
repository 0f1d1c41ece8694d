"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest
from git import Actor, Repo

AUTHOR = Actor("Test User", "test@example.com")


def commit_file(repo: Repo, name: str, days_ago: float) -> None:
    """Commit a new file with author and committer dates in the past."""
    path = Path(repo.working_tree_dir)
    filename = f"{name.replace('/', '_')}.txt"
    (path / filename).write_text(f"{name} content")
    repo.index.add([filename])
    timestamp = int((datetime.now(timezone.utc) - timedelta(days=days_ago)).timestamp())
    date = f"{timestamp} +0000"
    repo.index.commit(f"Add {name}", author=AUTHOR, committer=AUTHOR, author_date=date, commit_date=date)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at an empty directory so no real global config is read."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def test_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a repository with these local branches.

    - main: current branch, 60 days old initial commit plus a merge commit
    - feature/a: merged into main, last commit 40 days ago
    - feature/b: not merged, last commit 5 days ago
    """
    local_path = tmp_path / "local"
    local_path.mkdir()
    repo = Repo.init(local_path)

    # Set up git config
    repo.config_writer().set_value("user", "name", AUTHOR.name).release()
    repo.config_writer().set_value("user", "email", AUTHOR.email).release()

    commit_file(repo, "README", days_ago=60)

    # Ensure the initial branch is called main
    if repo.active_branch.name != "main":
        repo.active_branch.rename("main")
    main = repo.heads.main

    repo.create_head("feature/a").checkout()
    commit_file(repo, "feature/a", days_ago=40)

    main.checkout()
    repo.create_head("feature/b").checkout()
    commit_file(repo, "feature/b", days_ago=5)

    main.checkout()
    repo.git.merge("feature/a", "--no-ff", "-m", "Merge feature/a")

    yield local_path

    # Cleanup is handled by pytest's tmp_path fixture


@pytest.fixture
def add_branch(test_repo: Path) -> Callable[..., None]:
    """Return a helper that adds a branch off main, optionally merging it back."""
    repo = Repo(test_repo)

    def create(name: str, days_ago: float, merge: bool = False) -> None:
        current = repo.active_branch
        repo.heads.main.checkout()
        repo.create_head(name).checkout()
        commit_file(repo, name, days_ago)
        repo.heads.main.checkout()
        if merge:
            repo.git.merge(name, "--no-ff", "-m", f"Merge {name}")
        current.checkout()

    return create
