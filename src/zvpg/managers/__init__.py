"""zvpg managers."""

from zvpg.managers.port import PortAllocator
from zvpg.managers.instance import InstanceManager
from zvpg.managers.snapshot import SnapshotManager
from zvpg.managers.branch import BranchManager
from zvpg.managers.status import StatusManager, collect_host_status

__all__ = [
    "PortAllocator",
    "InstanceManager",
    "SnapshotManager",
    "BranchManager",
    "StatusManager",
    "collect_host_status",
]
