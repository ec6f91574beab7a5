from __future__ import annotations

from typing import Mapping

from mca_common.errors import ConfigurationError
from mca_config.settings import AwarenessConfig, require_credentials
from mca_connectors.asana import AsanaClient
from mca_connectors.base import ConnectorClient
from mca_connectors.github import GitHubClient
from mca_connectors.linear import LinearClient
from mca_connectors.notion import NotionClient

CLIENT_TYPES = {
    "asana": AsanaClient,
    "linear": LinearClient,
    "github": GitHubClient,
    "notion": NotionClient,
}


def build_clients(
    config: AwarenessConfig, credentials: Mapping[str, str] | None = None
) -> dict[str, ConnectorClient]:
    """
    One client per configured connector, in declaration order.
    Raises ConfigurationError before any client exists if a credential is missing.
    """
    creds = dict(credentials) if credentials is not None else require_credentials(config)
    missing = [n for n in config.connectors if not creds.get(n)]
    if missing:
        raise ConfigurationError(f"Missing credentials for: {', '.join(missing)}")
    return {name: CLIENT_TYPES[name](creds[name]) for name in config.connectors}
