"""Git access: credential resolution and working tree maintenance.

Components:
- **resolve_credential**: Declared credential to transport credential
- **exchange_github_app_token**: GitHub App installation token exchange
- **GitClient**: Clone-or-fetch of the configured ref
"""

from gatewaysync.git.auth import (
    BasicAuth,
    Credential,
    DirectorySecretStore,
    GitAuth,
    GitAuthSpec,
    GitHubAppCredential,
    GitHubAppRef,
    NoCredential,
    SecretKeyRef,
    SecretStore,
    SSHKeyAuth,
    SSHKeyCredential,
    TokenCredential,
    load_credential,
    parse_ssh_private_key,
    resolve_auth,
    resolve_credential,
)
from gatewaysync.git.client import GitClient, GitResult
from gatewaysync.git.errors import AuthError, GitError, GitHubAppError
from gatewaysync.git.githubapp import (
    DEFAULT_GITHUB_API_URL,
    GitHubAppToken,
    exchange_github_app_token,
    mint_app_jwt,
    parse_rsa_private_key,
)

__all__ = [
    # Constants
    "DEFAULT_GITHUB_API_URL",
    # Errors
    "AuthError",
    "GitError",
    "GitHubAppError",
    # Credentials
    "Credential",
    "GitHubAppCredential",
    "NoCredential",
    "SSHKeyCredential",
    "TokenCredential",
    # Transport credentials
    "BasicAuth",
    "GitAuth",
    "SSHKeyAuth",
    # Secret references
    "DirectorySecretStore",
    "GitAuthSpec",
    "GitHubAppRef",
    "SecretKeyRef",
    "SecretStore",
    # Functions
    "exchange_github_app_token",
    "load_credential",
    "mint_app_jwt",
    "parse_rsa_private_key",
    "parse_ssh_private_key",
    "resolve_auth",
    "resolve_credential",
    # Client
    "GitClient",
    "GitHubAppToken",
    "GitResult",
]
