"""
node_admission/control_plane/node_validator.py
───────────────────────────────────────────────
NodeValidator: the admission gate for storage Node resources.

Where it sits
──────────────
The webhook server decodes an AdmissionReview, builds an AdmissionRequest
and hands it to NodeValidator.admit(). admit() checks the payload really is
a Node, picks the rule set for the operation and turns whatever the rules
raise into an AdmissionResponse. Nothing is written anywhere.

Public API:
    validate_create(new)       → None, raises AdmissionError
    validate_update(old, new)  → None, raises AdmissionError
    validate_delete(existing)  → None, raises AdmissionError
    admit(request)             → AdmissionResponse
    resource()                 → Resource (what the webhook registers)

Dependencies are injected at construction:
    reader        : StateReader for settings, Kubernetes nodes, replicas, engines
    tag_validator : defaults to settings.validate_tags

Thread safety
──────────────
Every call builds its own RuleContext; the validator holds only its two
injected collaborators, so one instance can serve concurrent requests as
long as the reader can.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from node_admission.datastore import StateReader
from node_admission.shared.models import Node
from node_admission.shared.settings import validate_tags
from node_admission.control_plane.errors import AdmissionError, InvalidError
from node_admission.control_plane.rules import (
    CREATE_RULES,
    DELETE_RULES,
    UPDATE_RULES,
    RuleContext,
    TagValidator,
    run_rules,
)

logger = logging.getLogger(__name__)

NODE_KIND = "Node"


class Operation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class Resource(BaseModel):
    """Describes the resource and operations a validator is registered for."""
    name: str
    scope: str
    api_group: str
    api_version: str
    object_kind: str
    operation_types: List[Operation]


ObjectPayload = Union[Node, Dict[str, Any], None]


class AdmissionRequest(BaseModel):
    """
    One admission call, reduced to what the validator needs.

    This is not the AdmissionReview wire shape: kind is the plain kind string
    rather than the review's {group, version, kind} object, so the webhook
    server flattens the review before building one.

    object is the proposed state (CREATE, UPDATE); old_object is the current
    state (UPDATE, DELETE). Either may arrive as a decoded Node or as the
    raw JSON dict from the AdmissionReview.
    """
    model_config = ConfigDict(populate_by_name=True)

    uid: str = ""
    kind: str = NODE_KIND
    operation: Operation
    object: ObjectPayload = None
    old_object: ObjectPayload = Field(None, alias="oldObject")


class AdmissionResponse(BaseModel):
    uid: str = ""
    allowed: bool
    status: Optional[Dict[str, Any]] = None


def _as_node(obj: ObjectPayload) -> Node:
    """
    Type assertion for incoming payloads.

    Raises:
        InvalidError: if obj is missing, is not a Node, or does not decode as one.
    """
    if isinstance(obj, Node):
        if obj.kind != NODE_KIND:
            raise InvalidError(f"{obj.kind} {obj.name} is not a Node")
        return obj
    if isinstance(obj, dict) and obj.get("kind", NODE_KIND) == NODE_KIND:
        try:
            return Node.model_validate(obj)
        except ValidationError as err:
            raise InvalidError(f"{obj!r} is not a Node: {err}") from err
    raise InvalidError(f"{obj!r} is not a Node")


class NodeValidator:
    """
    Validates CREATE, UPDATE and DELETE of storage Node objects.

    Attributes:
        reader        : StateReader consulted by the rules.
        tag_validator : Callable validating a tag list.
    """

    def __init__(self, reader: StateReader, tag_validator: TagValidator = validate_tags) -> None:
        self.reader = reader
        self.tag_validator = tag_validator

    def resource(self) -> Resource:
        return Resource(
            name="nodes",
            scope="Namespaced",
            api_group="longhorn.io",
            api_version="v1beta2",
            object_kind=NODE_KIND,
            operation_types=[Operation.CREATE, Operation.UPDATE, Operation.DELETE],
        )

    def _context(self, new: Optional[Node] = None, old: Optional[Node] = None) -> RuleContext:
        return RuleContext(reader=self.reader, validate_tags=self.tag_validator, new=new, old=old)

    # ── Entry points ──────────────────────────────────────────────────────────

    def validate_create(self, new: ObjectPayload) -> None:
        new = _as_node(new)
        run_rules(CREATE_RULES, self._context(new=new))
        logger.debug("Node %s accepted for create", new.name)

    def validate_update(self, old: ObjectPayload, new: ObjectPayload) -> None:
        old, new = _as_node(old), _as_node(new)
        run_rules(UPDATE_RULES, self._context(new=new, old=old))
        logger.debug("Node %s accepted for update", new.name)

    def validate_delete(self, existing: ObjectPayload) -> None:
        existing = _as_node(existing)
        run_rules(DELETE_RULES, self._context(old=existing))
        logger.debug("Node %s accepted for delete", existing.name)

    # ── Dispatch gate ─────────────────────────────────────────────────────────

    def admit(self, request: AdmissionRequest) -> AdmissionResponse:
        """
        Route an admission request to the matching rule set.

        Operations this validator is not registered for pass through as
        allowed. Any AdmissionError becomes a denied response carrying its
        Kubernetes Status; other exceptions propagate to the webhook server.
        """
        if request.operation not in self.resource().operation_types:
            return AdmissionResponse(uid=request.uid, allowed=True)

        try:
            if request.kind != NODE_KIND:
                raise InvalidError(f"{request.kind} is not a {NODE_KIND}")
            if request.operation == Operation.CREATE:
                self.validate_create(request.object)
            elif request.operation == Operation.UPDATE:
                self.validate_update(request.old_object, request.object)
            else:
                self.validate_delete(request.old_object)
        except AdmissionError as err:
            logger.debug(
                "Denied %s of node (uid=%s): %s", request.operation.value, request.uid, err.message
            )
            return AdmissionResponse(uid=request.uid, allowed=False, status=err.to_status())

        return AdmissionResponse(uid=request.uid, allowed=True)
