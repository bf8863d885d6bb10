"""Connector registry: one implementation per ingestion source kind."""

from ..exceptions import ConfigurationError
from ..models.sources import IngestionSource, SourceKind
from .base import ConnectorContext, SourceConnector
from .drive import CloudDriveConnector
from .local import LocalConnector
from .push import AgentPushConnector

# Connector registry - register new source kinds here
_CONNECTOR_REGISTRY: dict[SourceKind, type[SourceConnector]] = {}


def register_connector(connector_class: type[SourceConnector]) -> None:
    """Register a connector class under the source kind it declares."""

    _CONNECTOR_REGISTRY[connector_class.kind] = connector_class


def get_connector_class(kind: SourceKind | str) -> type[SourceConnector]:
    """
    Get the connector class for a source kind.

    Raises:
        ConfigurationError: If the kind is unknown or has no connector
    """
    try:
        resolved = SourceKind(kind)
    except ValueError as exc:
        raise ConfigurationError(f"Unsupported source kind '{kind}'") from exc
    if resolved not in _CONNECTOR_REGISTRY:
        raise ConfigurationError(f"No connector registered for source kind '{resolved.value}'")
    return _CONNECTOR_REGISTRY[resolved]


def build_connector(
    source: IngestionSource,
    context: ConnectorContext | None = None,
) -> SourceConnector:
    """Select and instantiate the connector for ``source``."""

    return get_connector_class(source.kind)(source, context)


register_connector(LocalConnector)
register_connector(CloudDriveConnector)
register_connector(AgentPushConnector)

__all__ = [
    "AgentPushConnector",
    "CloudDriveConnector",
    "ConnectorContext",
    "LocalConnector",
    "SourceConnector",
    "build_connector",
    "get_connector_class",
    "register_connector",
]
