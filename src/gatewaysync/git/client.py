"""Local clone maintenance.

This module provides:
- GitResult: Commit and ref checked out by a fetch
- GitClient: Clone-or-fetch of one ref into a working tree (GitPython)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from gatewaysync.git.errors import GitError

if TYPE_CHECKING:
    from gatewaysync.git.auth import GitAuth

logger = logging.getLogger(__name__)

DEFAULT_REF = "HEAD"
REMOTE_NAME = "origin"


@dataclass
class GitResult:
    """Outcome of clone_or_fetch.

    Attributes:
        commit: Full SHA of the checked out commit.
        ref: Ref that was fetched.
    """

    commit: str
    ref: str


class GitClient:
    """Keeps a working tree at the tip of a remote ref.

    The working tree is disposable: local changes and untracked files are
    discarded on every fetch.
    """

    def __init__(self, depth: int = 0) -> None:
        """Initialize the client.

        Args:
            depth: Shallow fetch depth, 0 for full history.
        """
        self._depth = depth

    def clone_or_fetch(
        self,
        url: str,
        ref: str,
        local_path: Path,
        auth: GitAuth | None = None,
    ) -> GitResult:
        """Fetch ref from url and check it out in local_path.

        Initializes the repository on first use. Calling it again with the
        same arguments is a cheap no-op apart from the network round trip.

        Args:
            url: Remote repository URL.
            ref: Branch, tag or commit to fetch (empty for HEAD).
            local_path: Working tree location.
            auth: Transport credential, None for anonymous access.

        Returns:
            The checked out commit and the fetched ref.

        Raises:
            GitError: If any git operation fails.
        """
        ref = ref or DEFAULT_REF
        local_path = Path(local_path)

        try:
            repo = self._open_or_init(local_path)
            self._set_origin(repo, url)

            fetch_args = [REMOTE_NAME, ref, "--force", "--no-tags"]
            if self._depth > 0:
                fetch_args.append(f"--depth={self._depth}")

            if auth is None:
                repo.git.fetch(*fetch_args)
            else:
                with auth.environment() as env, repo.git.custom_environment(**env):
                    repo.git.fetch(*fetch_args)

            repo.git.checkout("--force", "FETCH_HEAD")
            repo.git.clean("-fdx")
            commit = repo.head.commit.hexsha
        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError, ValueError) as e:
            raise GitError(f"fetching {ref} from {url}: {e}") from e

        logger.debug(f"Checked out {commit} ({ref}) in {local_path}")
        return GitResult(commit=commit, ref=ref)

    def _open_or_init(self, local_path: Path) -> Repo:
        if (local_path / ".git").exists():
            return Repo(local_path)
        local_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initializing repository in {local_path}")
        return Repo.init(local_path)

    def _set_origin(self, repo: Repo, url: str) -> None:
        if REMOTE_NAME in [remote.name for remote in repo.remotes]:
            origin = repo.remote(REMOTE_NAME)
            if url not in origin.urls:
                origin.set_url(url)
        else:
            repo.create_remote(REMOTE_NAME, url)
