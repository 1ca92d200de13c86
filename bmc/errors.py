"""
Error taxonomy for BMC change supervision.

Errors are raised inside the management client and poll probes, and are
handed back to callers as the second element of ``(result, error)`` tuples
at each component boundary.

- TransportError: network/HTTP-layer failure
- UnexpectedStatus: response code outside the expected set
- JobFailed: tracked job reached a failure-terminal state
- OperationTimeout: caller budget exceeded ("it never finished")
- OperationCancelled: poll loop stopped through a cancel token
- ValidationError: request rejected before any write was issued
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass
class Diagnostic:
    """Single human-readable finding attached to an error"""
    summary: str
    detail: str = ""

    def __str__(self) -> str:
        if self.detail:
            return f"{self.summary}: {self.detail}"
        return self.summary


class BmcError(Exception):
    error_code = "BMC_ERROR"

    def __init__(self, message: str, diagnostics: Optional[List[Diagnostic]] = None):
        super().__init__(message)
        self.message = message
        self.diagnostics: List[Diagnostic] = list(diagnostics or [])

    def __str__(self) -> str:
        return self.message

    def add_diagnostic(self, summary: str, detail: str = "") -> None:
        self.diagnostics.append(Diagnostic(summary, detail))

    def deepest(self) -> str:
        """Most specific text available: last diagnostic, else the message."""
        if self.diagnostics:
            return str(self.diagnostics[-1])
        return self.message

    def to_dict(self) -> dict:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "diagnostics": [str(d) for d in self.diagnostics],
        }


class TransportError(BmcError):
    error_code = "TRANSPORT_ERROR"


class UnexpectedStatus(BmcError):
    error_code = "UNEXPECTED_STATUS"

    def __init__(self, message: str, status_code: int, diagnostics: Optional[List[Diagnostic]] = None):
        super().__init__(message, diagnostics)
        self.status_code = status_code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class JobFailed(BmcError):
    error_code = "JOB_FAILED"

    def __init__(self, message: str, state: str, job_log: Optional[str] = None,
                 diagnostics: Optional[List[Diagnostic]] = None):
        super().__init__(message, diagnostics)
        self.state = state
        self.job_log = job_log

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["state"] = self.state
        data["job_log"] = self.job_log
        return data


class OperationTimeout(BmcError):
    error_code = "TIMEOUT"

    def __init__(self, message: str, timeout_seconds: Optional[float] = None,
                 diagnostics: Optional[List[Diagnostic]] = None):
        super().__init__(message, diagnostics)
        self.timeout_seconds = timeout_seconds


class OperationCancelled(BmcError):
    error_code = "CANCELLED"


class ValidationError(BmcError):
    error_code = "VALIDATION_ERROR"
