"""
node_admission/control_plane — the Node admission gate.

Public API:

    NodeValidator       — validate_create / validate_update / validate_delete,
                          plus admit() for raw admission requests
    AdmissionRequest    — operation + old/new object snapshots
    AdmissionResponse   — allowed flag + Kubernetes Status on denial
    AdmissionError      — base rejection
    InvalidError        — 422, the request itself is wrong
    ForbiddenError      — 403, retry once the node controller catches up
"""

from node_admission.control_plane.errors import (
    AdmissionError,
    ForbiddenError,
    InvalidError,
)
from node_admission.control_plane.node_validator import (
    AdmissionRequest,
    AdmissionResponse,
    NodeValidator,
    Operation,
    Resource,
)

__all__ = [
    "AdmissionError",
    "ForbiddenError",
    "InvalidError",
    "AdmissionRequest",
    "AdmissionResponse",
    "NodeValidator",
    "Operation",
    "Resource",
]
