"""Adapters for the copy-on-write store, instance runtimes and port probing."""

from zvpg.infrastructure.dataset_backend import DatasetBackend
from zvpg.infrastructure.zfs_backend import ZfsBackend
from zvpg.infrastructure.instance_runtime import (
    InstanceRuntime,
    InstanceSpec,
    StopMode,
    ProcessRuntime,
    ContainerRuntime,
    create_runtime,
)
from zvpg.infrastructure.port_probe import is_port_in_use, make_port_probe

__all__ = [
    "DatasetBackend",
    "ZfsBackend",
    "InstanceRuntime",
    "InstanceSpec",
    "StopMode",
    "ProcessRuntime",
    "ContainerRuntime",
    "create_runtime",
    "is_port_in_use",
    "make_port_probe",
]
