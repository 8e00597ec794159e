"""
Error taxonomy for lector.

Every fallible operation raises one of these instead of leaking
``kubernetes.client.rest.ApiException`` to callers.
"""

from typing import List, Optional


class LectorError(Exception):
    """Base class for all lector errors."""
    pass


class ValidationError(LectorError):
    """A required argument is empty or malformed. Raised before any I/O."""
    pass


class ConfigurationError(LectorError):
    """Service bootstrap failed (missing identity, unreachable cluster)."""
    pass


class ClusterError(LectorError):
    """
    Transport or unknown failure talking to the cluster API.
    
    Attributes:
        status: HTTP status code if the API answered, else None
    """
    
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ClusterError):
    """Requested object does not exist."""
    
    def __init__(self, message: str):
        super().__init__(message, status=404)


class ConflictError(ClusterError):
    """Write rejected because the object's resource version changed."""
    
    def __init__(self, message: str):
        super().__init__(message, status=409)


class RetryExhaustedError(LectorError):
    """
    Optimistic-concurrency retries ran out.
    
    Attributes:
        attempts: Number of writes performed
    """
    
    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class CardinalityError(LectorError):
    """
    More instances matched than the protocol allows.
    
    Raised when more than one instance carries the master role.
    
    Attributes:
        names: Names of the matching instances
    """
    
    def __init__(self, message: str, names: List[str]):
        super().__init__(message)
        self.names = names
