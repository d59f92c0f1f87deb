"""Custom exceptions for the imgcloud resource manager."""

from typing import Any, List, Optional


class ResourceManagerError(Exception):
    """Base exception for the resource manager."""
    
    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class ConfigurationError(ResourceManagerError):
    """Raised when configuration is invalid."""
    pass


class ProbeError(ResourceManagerError):
    """Raised when a health probe fails (transport, status or payload)."""
    
    def __init__(self, instance_id: int, reason: str):
        super().__init__(
            f"Health probe failed for instance {instance_id}: {reason}",
            error_code="PROBE_FAILED"
        )
        self.instance_id = instance_id
        self.reason = reason


class ProbeTimeoutError(ProbeError):
    """Raised when a health probe does not answer in time."""
    
    def __init__(self, instance_id: int, timeout_seconds: float):
        super().__init__(instance_id, f"no response within {timeout_seconds}s")
        self.error_code = "PROBE_TIMEOUT"
        self.timeout_seconds = timeout_seconds


class ProviderError(ResourceManagerError):
    """Raised when the IaaS provider rejects an allocate/deallocate call."""
    
    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        super().__init__(message, error_code=f"PROVIDER_{provider.upper()}_ERROR")
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """Raised when the IaaS provider does not finish an operation in time."""
    
    def __init__(self, provider: str, operation: str, timeout_seconds: float):
        super().__init__(
            f"Timeout after {timeout_seconds}s waiting for {provider} to {operation}",
            provider=provider
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class DuplicateInstanceError(ResourceManagerError):
    """Raised when an instance id is already present in the registry."""
    
    def __init__(self, instance_id: int):
        super().__init__(
            f"Instance {instance_id} is already registered",
            error_code="DUPLICATE_INSTANCE"
        )
        self.instance_id = instance_id


class EventValidationError(ResourceManagerError):
    """Raised when an ingress event payload is rejected."""
    
    def __init__(self, kind: Any, errors: Optional[List[Any]] = None):
        message = f"Invalid '{kind}' event"
        if errors:
            message += f": {errors}"
        super().__init__(message, error_code="INVALID_EVENT")
        self.kind = kind
        self.errors = errors or []


class StatsSinkError(ResourceManagerError):
    """Raised when request stats cannot be written."""
    pass
