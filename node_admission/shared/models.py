"""
node_admission/shared/models.py
───────────────────────────────
The single source of truth for every object the node validator reads.

Design philosophy
-----------------
Every model answers one question: "What does the admission layer *need to
know* about this thing in order to accept or reject a Node mutation?"

The objects arrive as Kubernetes-style JSON (camelCase keys). Every field
that differs from its snake_case name carries an alias, and
``populate_by_name`` lets tests and callers build objects with the Python
names directly.

Range checks are absent on the fields the rules inspect
(instanceManagerCPURequest, storageReserved). A negative value must reach
the rule engine and come back as an admission rejection with a readable
message, not as a decoding error.

Reading guide
-------------
Read top-to-bottom. Each model builds on the ones above it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 1: ENUMERATIONS
# ─────────────────────────────────────────────────────────────────────────────

class DiskType(str, Enum):
    """
    How a disk is backed on the node.

    FILESYSTEM → A directory on a mounted filesystem. The default.
    BLOCK      → A raw block device. Only usable by the v2 data engine.

    Objects written before the field existed carry an empty type; that is
    not a member here and is stored as the empty string on DiskSpec.
    """
    FILESYSTEM = "filesystem"
    BLOCK = "block"


class DiskDriver(str, Enum):
    """
    Driver used to attach a block disk.

    NONE is the only legal value for filesystem disks.
    """
    NONE = ""
    AUTO = "auto"
    AIO = "aio"
    NVME = "nvme"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class NodeConditionType(str, Enum):
    READY = "Ready"
    MOUNT_PROPAGATION = "MountPropagation"
    SCHEDULABLE = "Schedulable"


class NodeConditionReason(str, Enum):
    """
    Reasons reported on the Ready condition.

    Only KUBERNETES_NODE_GONE and MANAGER_POD_MISSING permit a node to be
    removed from the storage system.
    """
    MANAGER_POD_DOWN = "ManagerPodDown"
    MANAGER_POD_MISSING = "ManagerPodMissing"
    KUBERNETES_NODE_GONE = "KubernetesNodeGone"
    KUBERNETES_NODE_NOT_READY = "KubernetesNodeNotReady"
    KUBERNETES_NODE_PRESSURE = "KubernetesNodePressure"


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 2: OBJECT METADATA
# ─────────────────────────────────────────────────────────────────────────────

class ObjectMeta(BaseModel):
    """
    The subset of Kubernetes object metadata the rules look at.

    Fields:
        annotations        → Carries the uninstall marker on delete.
        finalizers         → Compared old-vs-new for the finalizer bypass.
        deletion_timestamp → Set once the API server has accepted a delete;
                             the object lingers until finalizers are gone.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    namespace: str = ""
    annotations: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[datetime] = Field(None, alias="deletionTimestamp")

    @property
    def is_being_deleted(self) -> bool:
        return self.deletion_timestamp is not None


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 3: DISKS
# ─────────────────────────────────────────────────────────────────────────────

class DiskSpec(BaseModel):
    """
    Desired state of one disk on a node.

    Fields:
        disk_type          → DiskType value, or "" on objects that predate it.
                             Immutable once non-empty.
        disk_driver        → Must stay DiskDriver.NONE unless disk_type is BLOCK.
        storage_reserved   → Bytes held back from scheduling. Negative values
                             are representable so the validator can reject them.
        allow_scheduling   → New replicas may land here.
        eviction_requested → Drain all replicas off this disk.
    """
    model_config = ConfigDict(populate_by_name=True)

    disk_type: str = Field(DiskType.FILESYSTEM.value, alias="diskType")
    disk_driver: str = Field(DiskDriver.NONE.value, alias="diskDriver")
    path: str = ""
    storage_reserved: int = Field(0, alias="storageReserved")
    tags: List[str] = Field(default_factory=list)
    allow_scheduling: bool = Field(True, alias="allowScheduling")
    eviction_requested: bool = Field(False, alias="evictionRequested")

    @property
    def is_block(self) -> bool:
        return self.disk_type == DiskType.BLOCK.value


class DiskStatus(BaseModel):
    """
    Observed state of one disk, written by the node controller.

    storage_scheduled is the capacity already promised to replicas. A disk
    with a non-zero value still hosts data.
    """
    model_config = ConfigDict(populate_by_name=True)

    storage_scheduled: int = Field(0, alias="storageScheduled")


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 4: NODE
# ─────────────────────────────────────────────────────────────────────────────

class Condition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    status: str = ConditionStatus.UNKNOWN.value
    reason: str = ""
    message: str = ""


class NodeSpec(BaseModel):
    """
    Desired state of a storage node.

    instance_manager_cpu_request is in millicores. Zero means "use the
    cluster-wide guaranteed-instance-manager-cpu percentage".
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    allow_scheduling: bool = Field(True, alias="allowScheduling")
    eviction_requested: bool = Field(False, alias="evictionRequested")
    instance_manager_cpu_request: int = Field(0, alias="instanceManagerCPURequest")
    tags: List[str] = Field(default_factory=list)
    disks: Dict[str, DiskSpec] = Field(default_factory=dict)


class NodeStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conditions: List[Condition] = Field(default_factory=list)
    disk_status: Dict[str, DiskStatus] = Field(default_factory=dict, alias="diskStatus")

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        """
        Look up a condition by type.

        Returns None when the condition has never been reported, so callers
        can tell "absent" apart from "reported with an empty reason".
        """
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def storage_scheduled(self, disk_name: str) -> int:
        """Last known scheduled storage on a disk; 0 if no status entry exists."""
        status = self.disk_status.get(disk_name)
        return status.storage_scheduled if status is not None else 0


class Node(BaseModel):
    """
    A storage node resource: one cluster member and the disks it manages.

    The admission layer only ever sees snapshots of this object. It never
    writes one back.
    """
    model_config = ConfigDict(populate_by_name=True)

    kind: str = "Node"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: NodeSpec = Field(default_factory=NodeSpec)
    status: NodeStatus = Field(default_factory=NodeStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    def is_disk_spec_and_status_synced(self) -> bool:
        """
        True once the node controller has written a status for every disk.

        Both the count and the key set must agree; a status entry for a disk
        that is no longer in spec also counts as out of sync.
        """
        if len(self.spec.disks) != len(self.status.disk_status):
            return False
        return all(name in self.status.disk_status for name in self.spec.disks)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 5: BOUND WORKLOADS AND THE UNDERLYING KUBERNETES NODE
# ─────────────────────────────────────────────────────────────────────────────

class Replica(BaseModel):
    """A volume replica placed on a node. Its existence blocks node deletion."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    node_id: str = Field("", alias="nodeID")
    volume_name: str = Field("", alias="volumeName")


class Engine(BaseModel):
    """A volume engine running on a node. Its existence blocks node deletion."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    node_id: str = Field("", alias="nodeID")
    volume_name: str = Field("", alias="volumeName")


def parse_cpu_quantity(quantity: str) -> int:
    """
    Convert a Kubernetes CPU quantity to millicores.

    Accepts plain cores ("4", "1.5") and millicores ("3500m"). Fractional
    millicores round up, the same way the API server reports MilliValue().

    Raises:
        ValueError: if the string is not a CPU quantity.
    """
    text = quantity.strip()
    scale = Decimal(1000)
    if text.endswith("m"):
        text = text[:-1]
        scale = Decimal(1)
    try:
        value = Decimal(text) * scale
    except InvalidOperation:
        raise ValueError(f"invalid CPU quantity {quantity!r}") from None
    if not value.is_finite():
        raise ValueError(f"invalid CPU quantity {quantity!r}")
    return int(value.to_integral_value(rounding=ROUND_CEILING))


class KubernetesNode(BaseModel):
    """
    The Kubernetes Node underneath a storage node.

    Only allocatable CPU is consulted, to bound the instance manager
    CPU reservation.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str
    allocatable: Dict[str, str] = Field(default_factory=lambda: {"cpu": "0"})

    def allocatable_milli_cpu(self) -> int:
        return parse_cpu_quantity(self.allocatable.get("cpu", "0"))
