"""
node_admission/shared/settings.py
─────────────────────────────────
Cluster-wide settings the node validator consults, and the pure value
validators that go with them.

Why this is a separate file from models.py
------------------------------------------
models.py describes the objects a request carries. This file describes the
knobs an operator turns for the whole cluster, plus the tag syntax check.
None of it reads cluster state: the StateReader (datastore.py) fetches raw
values, and the functions here interpret them.

Settings used
-------------
  v2-data-engine                   bool, default "false"
      Enables block-type disks.

  guaranteed-instance-manager-cpu  int percentage, default "12"
      CPU reserved for each instance manager, as a percentage of the
      node's allocatable CPU. Accepted range [0, 40].
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Dict, Iterable, List

from pydantic import BaseModel, Field


class SettingName(str, Enum):
    V2_DATA_ENGINE = "v2-data-engine"
    GUARANTEED_INSTANCE_MANAGER_CPU = "guaranteed-instance-manager-cpu"


class SettingType(str, Enum):
    BOOL = "bool"
    INT = "int"


# Inclusive bounds of guaranteed-instance-manager-cpu.
CPU_RESERVATION_MIN_PCT = 0
CPU_RESERVATION_MAX_PCT = 40


class SettingValidationError(ValueError):
    """Raised when a setting value cannot be parsed or is out of range."""


class TagValidationError(ValueError):
    """Raised when a tag is not a valid qualified name."""


class SettingDefinition(BaseModel):
    """
    Static description of a setting: its type and the value auto-filled
    when nobody has stored one.
    """
    name: SettingName
    setting_type: SettingType
    default: str
    description: str = ""


class Setting(BaseModel):
    """A stored setting value, always carried as a string."""
    name: str
    value: str = Field(..., description="Raw value as stored in the cluster")


SETTING_DEFINITIONS: Dict[str, SettingDefinition] = {
    SettingName.V2_DATA_ENGINE.value: SettingDefinition(
        name=SettingName.V2_DATA_ENGINE,
        setting_type=SettingType.BOOL,
        default="false",
        description="Enable the v2 data engine and block-type disks.",
    ),
    SettingName.GUARANTEED_INSTANCE_MANAGER_CPU.value: SettingDefinition(
        name=SettingName.GUARANTEED_INSTANCE_MANAGER_CPU,
        setting_type=SettingType.INT,
        default="12",
        description="Percentage of allocatable CPU reserved per instance manager.",
    ),
}


def get_setting_definition(name: str) -> SettingDefinition:
    try:
        return SETTING_DEFINITIONS[name]
    except KeyError:
        raise SettingValidationError(f"unknown setting {name}") from None


def parse_bool_setting(name: str, value: str) -> bool:
    """Interpret a stored bool setting. Only "true"/"false" are accepted."""
    normalised = value.strip().lower()
    if normalised == "true":
        return True
    if normalised == "false":
        return False
    raise SettingValidationError(f"setting {name} value {value!r} is not a boolean")


def validate_cpu_reservation_values(name: str, value: str) -> None:
    """
    Check a CPU reservation percentage against the accepted range.

    Args:
        name:  Setting the value belongs to (used in the message).
        value: Percentage as a string, e.g. "12".

    Raises:
        SettingValidationError: if value is not an integer or is outside
                                [CPU_RESERVATION_MIN_PCT, CPU_RESERVATION_MAX_PCT].
    """
    try:
        pct = int(value.strip())
    except ValueError:
        raise SettingValidationError(
            f"invalid value {value!r} for setting {name}: should be an integer"
        ) from None

    if pct < CPU_RESERVATION_MIN_PCT or pct > CPU_RESERVATION_MAX_PCT:
        raise SettingValidationError(
            f"invalid value {value!r} for setting {name}: should be between "
            f"{CPU_RESERVATION_MIN_PCT} to {CPU_RESERVATION_MAX_PCT}"
        )


# ── Tags ──────────────────────────────────────────────────────────────────────

_QUALIFIED_NAME_MAX_LEN = 63
_DNS_SUBDOMAIN_MAX_LEN = 253
_NAME_RE = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$")
_DNS_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")


def _qualified_name_errors(tag: str) -> List[str]:
    errors: List[str] = []
    parts = tag.split("/")
    if len(parts) == 1:
        name = parts[0]
    elif len(parts) == 2:
        prefix, name = parts
        if not prefix:
            errors.append(f"{tag!r}: prefix part must be non-empty")
        elif len(prefix) > _DNS_SUBDOMAIN_MAX_LEN or not _DNS_SUBDOMAIN_RE.match(prefix):
            errors.append(f"{tag!r}: prefix part must be a lowercase DNS subdomain")
    else:
        return [f"{tag!r}: a qualified name may contain at most one '/'"]

    if not name:
        errors.append(f"{tag!r}: name part must be non-empty")
    elif len(name) > _QUALIFIED_NAME_MAX_LEN:
        errors.append(f"{tag!r}: name part must be no more than {_QUALIFIED_NAME_MAX_LEN} characters")
    elif not _NAME_RE.match(name):
        errors.append(
            f"{tag!r}: name part must consist of alphanumeric characters, '-', '_' or '.', "
            f"and must start and end with an alphanumeric character"
        )
    return errors


def validate_tags(tags: Iterable[str]) -> List[str]:
    """
    Validate node or disk tags and return them deduplicated and sorted.

    Each tag must be a Kubernetes qualified name: an optional DNS-subdomain
    prefix and '/', then a name of at most 63 characters.

    Raises:
        TagValidationError: on the first malformed tag.
    """
    seen = set()
    for tag in tags:
        if tag in seen:
            continue
        errors = _qualified_name_errors(tag)
        if errors:
            raise TagValidationError(
                "at least one error encountered while validating tags: " + ", ".join(errors)
            )
        seen.add(tag)
    return sorted(seen)
