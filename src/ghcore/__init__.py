"""ghcore - the request, release-check and polling core of a GitHub API client.

High-level public API (stable):

from ghcore import GitHubClient

client = GitHubClient(token=token)
viewer = client.graphql("query { viewer { login } }")
codespace = client.wait_until_stable(
    "my-codespace",
    lambda name: client.rest("GET", f"/user/codespaces/{name}"),
)

Failures surface as ``ghcore.errors.GitHubAPIError`` subclasses carrying an
``ErrorRecord`` (message fragments, kind, correlation id).
"""

from __future__ import annotations

# Defined before the submodule imports below; executor and version_check read it.
__version__ = "0.17.0"

from .client import GitHubClient  # noqa: E402
from .config import ClientConfig, ConfigError, load_config  # noqa: E402
from .errors import (  # noqa: E402
    ErrorKind,
    ErrorRecord,
    GitHubAPIError,
    GraphQLAPIError,
    TransportError,
)
from .executor import RequestExecutor  # noqa: E402
from .polling import PollTimeoutError, wait_until_stable  # noqa: E402
from .version_check import CheckState, VersionCheckContext  # noqa: E402

__all__ = [
    "CheckState",
    "ClientConfig",
    "ConfigError",
    "ErrorKind",
    "ErrorRecord",
    "GitHubAPIError",
    "GitHubClient",
    "GraphQLAPIError",
    "PollTimeoutError",
    "RequestExecutor",
    "TransportError",
    "VersionCheckContext",
    "load_config",
    "wait_until_stable",
    "__version__",
]
