"""Leader election and role-label propagation."""

from lector.election.elector import LeaseCoordinator, RolePropagatingHandler
from lector.election.lease import (
    ElectionHandler,
    KubernetesLeaseElector,
    LeaseConfig,
    LeaseElector,
)
from lector.election.retry import update_with_conflict_retry

__all__ = [
    "LeaseCoordinator",
    "RolePropagatingHandler",
    "ElectionHandler",
    "KubernetesLeaseElector",
    "LeaseConfig",
    "LeaseElector",
    "update_with_conflict_retry",
]
