"""
Error taxonomy for the statistics engine.

StatisticsError (base)
 ├── StoreUnavailable      query or connectivity failure
 ├── RowDecodeError        a single result row could not be decoded
 ├── InvalidParameter      out-of-range year/month/limit/days
 ├── OperationCancelled    caller cancelled the request
 └── DeadlineExceeded      caller deadline passed before completion
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class StatisticsError(Exception):
    code = "INTERNAL"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class StoreUnavailable(StatisticsError):
    code = "INTERNAL"

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class RowDecodeError(StatisticsError):
    code = "ROW_DECODE"

    def __init__(self, message: str, query: Optional[str] = None, row: Any = None):
        super().__init__(message)
        self.query = query
        self.row = row


class InvalidParameter(StatisticsError):
    code = "INVALID_ARGUMENT"

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.field is not None:
            payload["field"] = self.field
        return payload


class OperationCancelled(StatisticsError):
    code = "CANCELLED"


class DeadlineExceeded(StatisticsError):
    code = "DEADLINE_EXCEEDED"
