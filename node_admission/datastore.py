"""
node_admission/datastore.py
───────────────────────────
Read-only access to cluster state for the node validator.

The validator never talks to the API server directly. It is handed a
StateReader at construction time and goes through it for every setting,
Kubernetes node, replica and engine lookup. Production wires in a reader
backed by informer caches; tests and embedders use InMemoryDataStore.

Error contract
───────────────
  NotFoundError  : the object does not exist. The validator tolerates this
                   for the Kubernetes node lookup only.
  anything else  : a genuine read failure. The validator wraps it into an
                   InvalidError naming what it was trying to read.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List

from node_admission.shared.models import Engine, KubernetesNode, Replica
from node_admission.shared.settings import (
    Setting,
    get_setting_definition,
    parse_bool_setting,
)

logger = logging.getLogger(__name__)


class NotFoundError(LookupError):
    """
    Raised by a StateReader when the requested object does not exist.

    Attributes:
        kind: Object kind that was looked up, e.g. "node".
        name: Name that was looked up.
    """

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name!r} not found")


def is_not_found(err: BaseException) -> bool:
    return isinstance(err, NotFoundError)


class StateReader(ABC):
    """Read-only view of cluster state consumed by the node validator."""

    @abstractmethod
    def get_setting_as_bool(self, name: str) -> bool:
        """Value of a boolean feature flag, default applied when unset."""

    @abstractmethod
    def get_setting_with_default(self, name: str) -> Setting:
        """Stored setting, or one auto-filled with the definition's default."""

    @abstractmethod
    def get_kubernetes_node_ro(self, name: str) -> KubernetesNode:
        """The Kubernetes node; raises NotFoundError once it is gone."""

    @abstractmethod
    def list_replicas_by_node_ro(self, node_name: str) -> List[Replica]:
        """Replicas bound to the node."""

    @abstractmethod
    def list_engines_by_node_ro(self, node_name: str) -> List[Engine]:
        """Engines bound to the node."""


class InMemoryDataStore(StateReader):
    """
    Dict-backed StateReader.

    Holds exactly what was put into it. Settings that were never stored are
    auto-filled from SETTING_DEFINITIONS, matching how the cluster behaves
    before an operator touches them.
    """

    def __init__(self) -> None:
        self._settings: Dict[str, str] = {}
        self._kubernetes_nodes: Dict[str, KubernetesNode] = {}
        self._replicas: Dict[str, Replica] = {}
        self._engines: Dict[str, Engine] = {}

    # ── Writers (test and bootstrap use only) ─────────────────────────────────

    def put_setting(self, name: str, value: str) -> None:
        self._settings[name] = value

    def put_kubernetes_node(self, node: KubernetesNode) -> None:
        self._kubernetes_nodes[node.name] = node

    def delete_kubernetes_node(self, name: str) -> None:
        self._kubernetes_nodes.pop(name, None)

    def put_replica(self, replica: Replica) -> None:
        self._replicas[replica.name] = replica

    def put_engine(self, engine: Engine) -> None:
        self._engines[engine.name] = engine

    # ── StateReader ───────────────────────────────────────────────────────────

    def get_setting_with_default(self, name: str) -> Setting:
        definition = get_setting_definition(name)
        value = self._settings.get(name)
        if value is None:
            logger.debug("Setting %s not stored, using default %r", name, definition.default)
            value = definition.default
        return Setting(name=name, value=value)

    def get_setting_as_bool(self, name: str) -> bool:
        setting = self.get_setting_with_default(name)
        return parse_bool_setting(name, setting.value)

    def get_kubernetes_node_ro(self, name: str) -> KubernetesNode:
        try:
            return self._kubernetes_nodes[name]
        except KeyError:
            raise NotFoundError("node", name) from None

    def list_replicas_by_node_ro(self, node_name: str) -> List[Replica]:
        return [r for r in self._replicas.values() if r.node_id == node_name]

    def list_engines_by_node_ro(self, node_name: str) -> List[Engine]:
        return [e for e in self._engines.values() if e.node_id == node_name]
