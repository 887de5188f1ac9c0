"""
node_admission/control_plane/rules.py
──────────────────────────────────────
The rule engine: one small predicate per Node invariant, grouped into
ordered rule sets for CREATE, UPDATE and DELETE.

How a rule set runs
────────────────────
run_rules() walks the tuple in order. Each rule either
  • returns None             → invariant holds, go on to the next rule,
  • returns RuleOutcome.ALLOW → accept the request now, skip the rest,
  • raises AdmissionError     → reject with that error.

The first rule to raise decides which error the caller sees when several
invariants are broken at once. Pure in-memory checks sit near the front;
rules that read through the StateReader sit near the back.

Rules are stateless module-level functions. Everything they need travels in
a RuleContext built fresh for each request, including the StateReader, so
nothing here is shared between requests.

UPDATE order
─────────────
   1. finalizer removal bypass      (ALLOW)
   2. instanceManagerCPURequest >= 0
   3. node eviction vs scheduling
   4. disk spec/status synced       (ForbiddenError, retryable)
   5. node tag syntax
   6. CPU reservation bound         (reads Kubernetes node + setting)
   7. node name non-empty
   8. disk eviction vs scheduling
   9. disk admissibility            (reads v2-data-engine setting)
  10. safe disk removal
  11. disk type immutability
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from node_admission.datastore import StateReader, is_not_found
from node_admission.shared.models import (
    ConditionStatus,
    DiskDriver,
    Node,
    NodeConditionReason,
    NodeConditionType,
)
from node_admission.shared.settings import (
    SettingName,
    SettingValidationError,
    TagValidationError,
    validate_cpu_reservation_values,
)
from node_admission.control_plane.errors import ForbiddenError, InvalidError

logger = logging.getLogger(__name__)

# Finalizer the storage controllers put on every object they own.
STORAGE_FINALIZER = "longhorn.io"

# Annotation set by the uninstaller on nodes it removes itself.
DELETE_NODE_ANNOTATION = "longhorn.io/delete-node-from-longhorn"

# Ready-condition reasons under which a node may be removed.
DELETABLE_NODE_REASONS = frozenset({
    NodeConditionReason.KUBERNETES_NODE_GONE.value,
    NodeConditionReason.MANAGER_POD_MISSING.value,
})

TagValidator = Callable[[List[str]], List[str]]


class RuleOutcome(Enum):
    ALLOW = "allow"


@dataclass
class RuleContext:
    """
    Everything a rule may look at for one admission request.

    Attributes:
        reader:        StateReader for settings and bound workloads.
        validate_tags: Tag syntax check; raises TagValidationError.
        new:           Proposed object (CREATE, UPDATE).
        old:           Current object (UPDATE, DELETE).
    """
    reader: StateReader
    validate_tags: TagValidator
    new: Optional[Node] = None
    old: Optional[Node] = None
    _v2_data_engine_enabled: Optional[bool] = field(default=None, init=False, repr=False)

    def v2_data_engine_enabled(self) -> bool:
        """Read the v2-data-engine flag once per request."""
        if self._v2_data_engine_enabled is None:
            try:
                self._v2_data_engine_enabled = self.reader.get_setting_as_bool(
                    SettingName.V2_DATA_ENGINE.value
                )
            except Exception as err:
                raise InvalidError(f"failed to get v2 data engine setting: {err}") from err
        return self._v2_data_engine_enabled


RuleCheck = Callable[[RuleContext], Optional[RuleOutcome]]


@dataclass(frozen=True)
class Rule:
    name: str
    check: RuleCheck


def run_rules(rules: Tuple[Rule, ...], ctx: RuleContext) -> None:
    """
    Evaluate rules in order, stopping at the first ALLOW or rejection.

    Raises:
        AdmissionError: raised by the first violated rule.
    """
    for rule in rules:
        if rule.check(ctx) is RuleOutcome.ALLOW:
            logger.debug("Rule %s allowed the request early", rule.name)
            return


# ── Shared checks ─────────────────────────────────────────────────────────────

def _check_cpu_request_non_negative(ctx: RuleContext) -> None:
    if ctx.new.spec.instance_manager_cpu_request < 0:
        raise InvalidError(
            "instanceManagerCPURequest should be greater than or equal to 0",
            "spec.instanceManagerCPURequest",
        )


def _check_disk_type_and_driver(node: Node, disk_name: str, v2_enabled: bool, block_message: str) -> None:
    disk = node.spec.disks[disk_name]
    if not v2_enabled and disk.is_block:
        raise InvalidError(block_message, f"spec.disks.{disk_name}.diskType")
    if not disk.is_block and disk.disk_driver != DiskDriver.NONE.value:
        raise InvalidError(
            f"disk {disk_name} type {disk.disk_type} is not supported to specify disk driver",
            f"spec.disks.{disk_name}.diskDriver",
        )


# ── CREATE ────────────────────────────────────────────────────────────────────

def _check_create_disk_types(ctx: RuleContext) -> None:
    v2_enabled = ctx.v2_data_engine_enabled()
    for name, disk in ctx.new.spec.disks.items():
        _check_disk_type_and_driver(
            ctx.new, name, v2_enabled,
            f"disk {name} type {disk.disk_type} is not supported since v2 data engine is disabled",
        )


CREATE_RULES: Tuple[Rule, ...] = (
    Rule("cpu-request-non-negative", _check_cpu_request_non_negative),
    Rule("disk-type-and-driver", _check_create_disk_types),
)


# ── UPDATE ────────────────────────────────────────────────────────────────────

def is_removing_storage_finalizer(old: Node, new: Node) -> bool:
    """
    True when an update on a deleting object only drops our finalizer.

    The controller decides when that is safe; admission never blocks it.
    """
    if not new.metadata.is_being_deleted:
        return False
    old_finalizers = old.metadata.finalizers
    new_finalizers = new.metadata.finalizers
    return (
        len(new_finalizers) == len(old_finalizers) - 1
        and STORAGE_FINALIZER in old_finalizers
        and STORAGE_FINALIZER not in new_finalizers
    )


def _check_finalizer_removal(ctx: RuleContext) -> Optional[RuleOutcome]:
    if is_removing_storage_finalizer(ctx.old, ctx.new):
        return RuleOutcome.ALLOW
    return None


def _check_node_eviction(ctx: RuleContext) -> None:
    spec = ctx.new.spec
    if spec.eviction_requested and spec.allow_scheduling:
        raise InvalidError(
            f"need to disable scheduling on node {ctx.old.name} for node eviction, "
            f"or cancel eviction to enable scheduling on this node",
            "spec.allowScheduling",
        )


def _check_disks_synced(ctx: RuleContext) -> None:
    if not ctx.old.is_disk_spec_and_status_synced():
        raise ForbiddenError(
            f"spec and status of disks on node {ctx.old.name} are being syncing "
            f"and please retry later."
        )


def _check_node_tags(ctx: RuleContext) -> None:
    try:
        ctx.validate_tags(ctx.new.spec.tags)
    except TagValidationError as err:
        raise InvalidError(str(err), "spec.tags") from err


def _percentage_half_up(request: int, allocatable: int) -> int:
    """round(request / allocatable * 100) with halves rounded up, in integers."""
    return (200 * request + allocatable) // (2 * allocatable)


def _check_cpu_reservation(ctx: RuleContext) -> None:
    """
    Bound the instance manager CPU request by the guaranteed-CPU range.

    The request is converted to a percentage of the Kubernetes node's
    allocatable CPU. If that node is already gone there is nothing to
    measure against, so the check is skipped with a warning.
    """
    request = ctx.new.spec.instance_manager_cpu_request
    if request == 0:
        return

    node_name = ctx.old.name
    try:
        kube_node = ctx.reader.get_kubernetes_node_ro(node_name)
    except Exception as err:
        if is_not_found(err):
            logger.warning("Kubernetes node %s has been deleted", node_name)
            return
        raise InvalidError(f"failed to get Kubernetes node {node_name}: {err}") from err

    try:
        allocatable_cpu = kube_node.allocatable_milli_cpu()
    except ValueError as err:
        raise InvalidError(f"failed to read allocatable CPU of node {node_name}: {err}") from err
    if allocatable_cpu <= 0:
        raise InvalidError(
            f"Kubernetes node {node_name} reports no allocatable CPU",
            "spec.instanceManagerCPURequest",
        )

    setting_name = SettingName.GUARANTEED_INSTANCE_MANAGER_CPU.value
    try:
        setting = ctx.reader.get_setting_with_default(setting_name)
    except Exception as err:
        raise InvalidError(f"failed to get setting {setting_name}: {err}") from err

    percentage = setting.value
    if request > 0:
        percentage = str(_percentage_half_up(request, allocatable_cpu))
    # TODO: bound the v2 data engine instance manager CPU as well once it has its own setting.
    try:
        validate_cpu_reservation_values(setting_name, percentage)
    except SettingValidationError as err:
        raise InvalidError(str(err), "spec.instanceManagerCPURequest") from err


def _check_node_name(ctx: RuleContext) -> None:
    if ctx.new.spec.name == "":
        raise InvalidError("node name is invalid. You can't have a Spec.Name empty", "spec.name")


def _check_disk_eviction(ctx: RuleContext) -> None:
    for name, disk in ctx.new.spec.disks.items():
        if disk.eviction_requested and disk.allow_scheduling:
            raise InvalidError(
                f"need to disable scheduling on disk {name} for disk eviction, "
                f"or cancel eviction to enable scheduling on this disk",
                f"spec.disks.{name}.allowScheduling",
            )


def _check_disk_admissibility(ctx: RuleContext) -> None:
    node = ctx.new
    v2_enabled = ctx.v2_data_engine_enabled()
    for name, disk in node.spec.disks.items():
        if disk.storage_reserved < 0:
            raise InvalidError(
                f"update disk on node {node.name} error: The storageReserved setting of disk "
                f"{name}({disk.path}) is not valid, should be positive and no more than "
                f"storageMaximum and storageAvailable",
                f"spec.disks.{name}.storageReserved",
            )
        try:
            ctx.validate_tags(disk.tags)
        except TagValidationError as err:
            raise InvalidError(str(err), f"spec.disks.{name}.tags") from err
        _check_disk_type_and_driver(
            node, name, v2_enabled,
            f"update disk on node {node.name} error: The disk {name}({disk.path}) is a "
            f"block device, but the SPDK feature is not enabled",
        )


def _check_disk_removal(ctx: RuleContext) -> None:
    old = ctx.old
    for name, disk in old.spec.disks.items():
        if name in ctx.new.spec.disks:
            continue
        if disk.allow_scheduling or old.status.storage_scheduled(name) != 0:
            message = (
                f"delete disk {name}({disk.path}) on node {old.name} error: please disable "
                f"the disk and remove all replicas and backing images first"
            )
            logger.info("Rejecting disk removal: %s", message)
            raise InvalidError(message, f"spec.disks.{name}")


def _check_disk_type_unchanged(ctx: RuleContext) -> None:
    for name, old_disk in ctx.old.spec.disks.items():
        new_disk = ctx.new.spec.disks.get(name)
        if new_disk is None:
            continue
        if old_disk.disk_type != "" and old_disk.disk_type != new_disk.disk_type:
            raise InvalidError(
                f"update disk on node {ctx.new.name} error: The disk {name}({old_disk.path}) "
                f"type is not allow to change",
                f"spec.disks.{name}.diskType",
            )


UPDATE_RULES: Tuple[Rule, ...] = (
    Rule("finalizer-removal", _check_finalizer_removal),
    Rule("cpu-request-non-negative", _check_cpu_request_non_negative),
    Rule("node-eviction", _check_node_eviction),
    Rule("disks-synced", _check_disks_synced),
    Rule("node-tags", _check_node_tags),
    Rule("cpu-reservation", _check_cpu_reservation),
    Rule("node-name", _check_node_name),
    Rule("disk-eviction", _check_disk_eviction),
    Rule("disk-admissibility", _check_disk_admissibility),
    Rule("disk-removal", _check_disk_removal),
    Rule("disk-type-unchanged", _check_disk_type_unchanged),
)


# ── DELETE ────────────────────────────────────────────────────────────────────

def _check_uninstalling(ctx: RuleContext) -> Optional[RuleOutcome]:
    if DELETE_NODE_ANNOTATION in ctx.old.metadata.annotations:
        return RuleOutcome.ALLOW
    return None


def _check_node_removable(ctx: RuleContext) -> None:
    """
    A node leaves the storage system only when it is already dead to it.

    Ready must not be True, for one of DELETABLE_NODE_REASONS, scheduling
    must be off, and no replica or engine may still be bound. A Ready
    condition that was never reported fails the reason check.
    """
    node = ctx.old
    try:
        replicas = ctx.reader.list_replicas_by_node_ro(node.name)
    except Exception as err:
        raise InvalidError(f"failed to list replicas on node {node.name}: {err}") from err
    try:
        engines = ctx.reader.list_engines_by_node_ro(node.name)
    except Exception as err:
        raise InvalidError(f"failed to list engines on node {node.name}: {err}") from err

    condition = node.status.get_condition(NodeConditionType.READY.value)
    if condition is None:
        status, reason = "not reported", ""
    else:
        status, reason = condition.status, condition.reason

    if (
        status == ConditionStatus.TRUE.value
        or reason not in DELETABLE_NODE_REASONS
        or node.spec.allow_scheduling
        or replicas
        or engines
    ):
        raise InvalidError(
            f"could not delete node {node.name} with node ready condition is {status}, "
            f"reason is {reason}, node schedulable {str(node.spec.allow_scheduling).lower()}, "
            f"and {len(replicas)} replica, {len(engines)} engine running on it"
        )


DELETE_RULES: Tuple[Rule, ...] = (
    Rule("uninstalling", _check_uninstalling),
    Rule("node-removable", _check_node_removable),
)
