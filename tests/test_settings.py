"""
tests/test_settings.py
───────────────────────
Setting values, tag syntax, CPU quantities and the in-memory StateReader.

Test groups:
    Group 1 — CPU reservation range (4 tests)
    Group 2 — Tag validation (5 tests)
    Group 3 — CPU quantity parsing (3 tests)
    Group 4 — InMemoryDataStore (4 tests)
"""

from __future__ import annotations

import pytest

from node_admission.datastore import InMemoryDataStore, NotFoundError, is_not_found
from node_admission.shared.models import KubernetesNode, parse_cpu_quantity
from node_admission.shared.settings import (
    SettingName,
    SettingValidationError,
    TagValidationError,
    parse_bool_setting,
    validate_cpu_reservation_values,
    validate_tags,
)

CPU_SETTING = SettingName.GUARANTEED_INSTANCE_MANAGER_CPU.value


# ─────────────────────────────────────────────────────────────────────────────
# Group 1 — CPU reservation range
# ─────────────────────────────────────────────────────────────────────────────

class TestCpuReservationRange:
    @pytest.mark.parametrize("value", ["0", "12", "40"])
    def test_in_range_accepted(self, value: str) -> None:
        validate_cpu_reservation_values(CPU_SETTING, value)

    @pytest.mark.parametrize("value", ["-1", "41"])
    def test_out_of_range_rejected(self, value: str) -> None:
        with pytest.raises(SettingValidationError, match="between 0 to 40"):
            validate_cpu_reservation_values(CPU_SETTING, value)

    def test_non_integer_rejected(self) -> None:
        with pytest.raises(SettingValidationError, match="should be an integer"):
            validate_cpu_reservation_values(CPU_SETTING, "12.5")

    def test_bool_parsing(self) -> None:
        assert parse_bool_setting("x", "TRUE") is True
        assert parse_bool_setting("x", "false") is False
        with pytest.raises(SettingValidationError):
            parse_bool_setting("x", "yes")


# ─────────────────────────────────────────────────────────────────────────────
# Group 2 — Tag validation
# ─────────────────────────────────────────────────────────────────────────────

class TestTags:
    def test_deduplicated_and_sorted(self) -> None:
        assert validate_tags(["ssd", "fast", "ssd"]) == ["fast", "ssd"]

    def test_prefixed_tag_accepted(self) -> None:
        assert validate_tags(["storage.example.com/tier-1"]) == ["storage.example.com/tier-1"]

    @pytest.mark.parametrize("tag", ["", "has space", "-lead", "trail_", "a/b/c", "UPPER.example/x"])
    def test_malformed_rejected(self, tag: str) -> None:
        with pytest.raises(TagValidationError):
            validate_tags([tag])

    def test_name_length_limit(self) -> None:
        validate_tags(["a" * 63])
        with pytest.raises(TagValidationError, match="no more than 63"):
            validate_tags(["a" * 64])

    def test_empty_list(self) -> None:
        assert validate_tags([]) == []


# ─────────────────────────────────────────────────────────────────────────────
# Group 3 — CPU quantity parsing
# ─────────────────────────────────────────────────────────────────────────────

class TestCpuQuantity:
    @pytest.mark.parametrize("quantity, milli", [("4", 4000), ("3500m", 3500), ("1.5", 1500), ("0.0005", 1)])
    def test_parses(self, quantity: str, milli: int) -> None:
        assert parse_cpu_quantity(quantity) == milli

    def test_garbage_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_cpu_quantity("four")

    def test_kubernetes_node_allocatable(self) -> None:
        node = KubernetesNode(name="n", allocatable={"cpu": "7900m", "memory": "31Gi"})
        assert node.allocatable_milli_cpu() == 7900


# ─────────────────────────────────────────────────────────────────────────────
# Group 4 — InMemoryDataStore
# ─────────────────────────────────────────────────────────────────────────────

class TestInMemoryDataStore:
    def test_defaults_auto_filled(self) -> None:
        store = InMemoryDataStore()
        assert store.get_setting_with_default(CPU_SETTING).value == "12"
        assert store.get_setting_as_bool(SettingName.V2_DATA_ENGINE.value) is False

    def test_stored_value_wins(self) -> None:
        store = InMemoryDataStore()
        store.put_setting(CPU_SETTING, "20")
        assert store.get_setting_with_default(CPU_SETTING).value == "20"

    def test_unknown_setting_rejected(self) -> None:
        with pytest.raises(SettingValidationError, match="unknown setting"):
            InMemoryDataStore().get_setting_with_default("no-such-setting")

    def test_missing_kubernetes_node_is_not_found(self) -> None:
        store = InMemoryDataStore()
        with pytest.raises(NotFoundError) as exc_info:
            store.get_kubernetes_node_ro("gone")
        assert is_not_found(exc_info.value)
