"""
Typed pipeline errors.

Every error carries a stable machine-readable ``code``. Caller-contract
violations are fatal to the current call and are never retried automatically.
Moderation gating and search drift are not errors; they are returned as data.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all lore pipeline errors."""

    def __init__(self, code: str, detail: Optional[str] = None, **context):
        self.code = code
        self.detail = detail
        self.context = context
        message = code if not detail else f"{code}: {detail}"
        super().__init__(message)


class ContractViolation(PipelineError):
    """Raised when a caller omits or misnames a required identifier."""
    pass


class CapabilityValidationError(PipelineError):
    """Raised when a capability reference does not match the registry."""
    pass


class StateStoreError(PipelineError):
    """Raised when the publishing state store cannot satisfy a request."""
    pass
