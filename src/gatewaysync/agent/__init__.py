"""Sync agent: orchestration and its collaborators.

Architecture:
    MetadataWatcher → TriggerChannel → Agent → GitClient / SyncEngine / GatewayClient
                                          ↓
                                     StatusFile, AgentMetrics, HealthServer

Components:
- **Agent**: Main loop, one sync cycle per trigger
- **DirectoryMetadataStore / StatusFile**: Metadata and status bus
- **MetadataWatcher / TriggerChannel**: Coalesced sync triggers
- **GatewayClient**: Scan and health calls to the gateway
- **HealthServer / AgentMetrics**: Probes and Prometheus metrics
"""

from gatewaysync.agent.agent import (
    Agent,
    AgentError,
    CycleState,
    build_template_context,
    file_credential,
)
from gatewaysync.agent.bus import (
    DirectoryMetadataStore,
    Metadata,
    MetadataError,
    MetadataStore,
    StatusFile,
    StatusStore,
    StatusStoreError,
)
from gatewaysync.agent.gateway import GatewayAPIError, GatewayClient, ScanResult
from gatewaysync.agent.health import HealthServer, create_health_app
from gatewaysync.agent.metrics import AgentMetrics
from gatewaysync.agent.watcher import MetadataWatcher, TriggerChannel

__all__ = [
    # Agent
    "Agent",
    "AgentError",
    "CycleState",
    "build_template_context",
    "file_credential",
    # Bus
    "DirectoryMetadataStore",
    "Metadata",
    "MetadataError",
    "MetadataStore",
    "StatusFile",
    "StatusStore",
    "StatusStoreError",
    # Gateway
    "GatewayAPIError",
    "GatewayClient",
    "ScanResult",
    # Health and metrics
    "AgentMetrics",
    "HealthServer",
    "create_health_app",
    # Triggers
    "MetadataWatcher",
    "TriggerChannel",
]
