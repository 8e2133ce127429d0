"""Exceptions for git operations and credential resolution."""

from __future__ import annotations


class GitError(Exception):
    """Base exception for git errors."""


class AuthError(GitError):
    """Credential could not be resolved."""


class GitHubAppError(AuthError):
    """GitHub rejected the installation token request."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"GitHub API returned {status_code}: {body}")
