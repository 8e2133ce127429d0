"""Core module - Shared configuration and status types."""

from gatewaysync.core.config import AgentConfig, read_pod_labels
from gatewaysync.core.types import GatewayStatus, SyncStatus, format_duration

__all__ = [
    # Config
    "AgentConfig",
    "read_pod_labels",
    # Types
    "GatewayStatus",
    "SyncStatus",
    "format_duration",
]
