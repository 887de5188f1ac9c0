"""
tests/test_node_create.py
──────────────────────────
CREATE rule set for storage Node objects.

Test groups:
    Group 1 — CPU request sign (3 tests)
    Group 2 — Block disks vs the v2 data engine flag (4 tests)
    Group 3 — Disk driver on non-block disks (3 tests)
    Group 4 — Setting read failures (1 test)
"""

from __future__ import annotations

from typing import Dict, Optional

import pytest

from node_admission.datastore import InMemoryDataStore
from node_admission.shared.models import DiskSpec, DiskType, Node, NodeSpec, ObjectMeta
from node_admission.shared.settings import SettingName
from node_admission.control_plane import InvalidError, NodeValidator


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

def _disk(disk_type: str = DiskType.FILESYSTEM.value, driver: str = "") -> DiskSpec:
    return DiskSpec(disk_type=disk_type, disk_driver=driver, path="/var/lib/storage")


def _node(
    cpu_request: int = 0,
    disks: Optional[Dict[str, DiskSpec]] = None,
) -> Node:
    return Node(
        metadata=ObjectMeta(name="node-1"),
        spec=NodeSpec(
            name="node-1",
            instance_manager_cpu_request=cpu_request,
            disks=disks or {},
        ),
    )


@pytest.fixture
def datastore() -> InMemoryDataStore:
    return InMemoryDataStore()


@pytest.fixture
def validator(datastore: InMemoryDataStore) -> NodeValidator:
    return NodeValidator(datastore)


def _enable_v2(datastore: InMemoryDataStore) -> None:
    datastore.put_setting(SettingName.V2_DATA_ENGINE.value, "true")


# ─────────────────────────────────────────────────────────────────────────────
# Group 1 — CPU request sign
# ─────────────────────────────────────────────────────────────────────────────

class TestCpuRequest:
    def test_negative_cpu_request_rejected(self, validator: NodeValidator) -> None:
        with pytest.raises(InvalidError, match="instanceManagerCPURequest"):
            validator.validate_create(_node(cpu_request=-1))

    def test_zero_cpu_request_accepted(self, validator: NodeValidator) -> None:
        validator.validate_create(_node(cpu_request=0))

    def test_positive_cpu_request_accepted(self, validator: NodeValidator) -> None:
        """CREATE does not bound the request against allocatable CPU."""
        validator.validate_create(_node(cpu_request=100000))


# ─────────────────────────────────────────────────────────────────────────────
# Group 2 — Block disks vs the v2 data engine flag
# ─────────────────────────────────────────────────────────────────────────────

class TestBlockDisks:
    def test_block_disk_rejected_when_flag_unset(self, validator: NodeValidator) -> None:
        """The flag defaults to false."""
        node = _node(disks={"nvme0": _disk(DiskType.BLOCK.value)})
        with pytest.raises(InvalidError, match="v2 data engine is disabled"):
            validator.validate_create(node)

    def test_block_disk_rejected_when_flag_false(
        self, datastore: InMemoryDataStore, validator: NodeValidator
    ) -> None:
        datastore.put_setting(SettingName.V2_DATA_ENGINE.value, "false")
        node = _node(disks={"nvme0": _disk(DiskType.BLOCK.value)})
        with pytest.raises(InvalidError):
            validator.validate_create(node)

    def test_block_disk_accepted_when_flag_enabled(
        self, datastore: InMemoryDataStore, validator: NodeValidator
    ) -> None:
        _enable_v2(datastore)
        node = _node(disks={"nvme0": _disk(DiskType.BLOCK.value, driver="auto")})
        validator.validate_create(node)

    def test_filesystem_disk_accepted_with_flag_disabled(self, validator: NodeValidator) -> None:
        validator.validate_create(_node(disks={"default": _disk()}))


# ─────────────────────────────────────────────────────────────────────────────
# Group 3 — Disk driver on non-block disks
# ─────────────────────────────────────────────────────────────────────────────

class TestDiskDriver:
    def test_filesystem_disk_with_driver_rejected(self, validator: NodeValidator) -> None:
        node = _node(disks={"default": _disk(driver="aio")})
        with pytest.raises(InvalidError, match="not supported to specify disk driver"):
            validator.validate_create(node)

    def test_filesystem_disk_with_driver_rejected_even_with_flag(
        self, datastore: InMemoryDataStore, validator: NodeValidator
    ) -> None:
        _enable_v2(datastore)
        node = _node(disks={"default": _disk(driver="nvme")})
        with pytest.raises(InvalidError) as exc_info:
            validator.validate_create(node)
        assert exc_info.value.field == "spec.disks.default.diskDriver"

    def test_legacy_empty_type_with_driver_rejected(
        self, datastore: InMemoryDataStore, validator: NodeValidator
    ) -> None:
        """An empty type is not block, so it may not carry a driver either."""
        _enable_v2(datastore)
        node = _node(disks={"old": _disk(disk_type="", driver="auto")})
        with pytest.raises(InvalidError):
            validator.validate_create(node)


# ─────────────────────────────────────────────────────────────────────────────
# Group 4 — Setting read failures
# ─────────────────────────────────────────────────────────────────────────────

class TestSettingFailure:
    def test_unparseable_flag_is_invalid(
        self, datastore: InMemoryDataStore, validator: NodeValidator
    ) -> None:
        datastore.put_setting(SettingName.V2_DATA_ENGINE.value, "maybe")
        with pytest.raises(InvalidError, match="failed to get v2 data engine setting"):
            validator.validate_create(_node())
