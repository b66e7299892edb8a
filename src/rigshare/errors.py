"""构建服务错误类型 - Build service error taxonomy

每种错误对应唯一的 HTTP 状态码。
Each error kind maps to exactly one client-facing status code.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class RigShareError(Exception):
    kind: str = "Error"
    status_code: int = 500

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.detail is not None:
            body["detail"] = self.detail
        return body


class InvalidArgument(RigShareError):
    kind = "InvalidArgument"
    status_code = 400


class Unauthenticated(RigShareError):
    kind = "Unauthenticated"
    status_code = 401

    def __init__(self, message: str = "authentication required", detail: Any = None):
        super().__init__(message, detail)


class Forbidden(RigShareError):
    kind = "Forbidden"
    status_code = 403


class NotFound(RigShareError):
    kind = "NotFound"
    status_code = 404


class ComponentsNotFound(RigShareError):
    kind = "ComponentsNotFound"
    status_code = 422

    def __init__(self, missing_ids: List[str]):
        super().__init__(
            f"components not found: {', '.join(missing_ids)}",
            detail={"missingIds": list(missing_ids)},
        )
        self.missing_ids = list(missing_ids)


class TransactionFailure(RigShareError):
    """Store-level abort. The message never carries driver internals."""

    kind = "TransactionFailure"
    status_code = 500

    def __init__(self, message: str = "the operation could not be completed", detail: Optional[Any] = None):
        super().__init__(message, detail)
