"""stagesync - Shared stage document relay and client sync agent."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stagesync")
except PackageNotFoundError:
    __version__ = "0+local"

from stagesync.agent import SyncAgent, SyncStatus, create_origin_id
from stagesync.config import AgentConfig, RelayConfig
from stagesync.document import StageDocument
from stagesync.exceptions import PayloadError, StageSyncConfigError, StageSyncError, SyncTransportError
from stagesync.models import (
    Crew,
    CustomStatus,
    Equipment,
    EquipmentType,
    Issue,
    IssueStatus,
    Position,
    Snapshot,
)
from stagesync.relay import RelayHub, create_app, run_relay

__all__ = [
    "__version__",
    "AgentConfig",
    "Crew",
    "CustomStatus",
    "Equipment",
    "EquipmentType",
    "Issue",
    "IssueStatus",
    "PayloadError",
    "Position",
    "RelayConfig",
    "RelayHub",
    "Snapshot",
    "StageDocument",
    "StageSyncConfigError",
    "StageSyncError",
    "SyncAgent",
    "SyncStatus",
    "SyncTransportError",
    "create_app",
    "create_origin_id",
    "run_relay",
]
