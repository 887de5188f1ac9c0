"""
node_admission/control_plane/errors.py
───────────────────────────────────────
The two ways a Node mutation can be refused.

  InvalidError   (422 Invalid)
      The request itself is wrong: bad CPU value, disallowed disk type,
      malformed tag, immutable field changed, unsafe delete. Resubmitting
      the same request will fail again.

  ForbiddenError (403 Forbidden)
      The request may be fine, but the cluster is not ready to judge it yet
      (disk spec and status still syncing). The caller retries later.

Both carry a human-readable message naming the offending node, disk or
field, and render to the Kubernetes Status shape the admission response
embeds.
"""

from __future__ import annotations

from typing import Any, Dict


class AdmissionError(Exception):
    """
    Base class for admission rejections.

    Attributes:
        message: Human-readable explanation of why the request was refused.
        field:   Dotted path of the offending field, or "" when not specific.
        code:    HTTP status code reported to the API server.
        reason:  Kubernetes StatusReason string.
    """

    code = 500
    reason = "InternalError"

    def __init__(self, message: str, field: str = "") -> None:
        self.message = message
        self.field = field
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return False

    def to_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "code": self.code,
            "reason": self.reason,
            "message": self.message,
        }
        if self.field:
            status["details"] = {"causes": [{"field": self.field, "message": self.message}]}
        return status


class InvalidError(AdmissionError):
    code = 422
    reason = "Invalid"


class ForbiddenError(AdmissionError):
    code = 403
    reason = "Forbidden"

    @property
    def retryable(self) -> bool:
        return True
