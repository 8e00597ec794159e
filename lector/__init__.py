"""
lector - leader election and job coordination for Kubernetes workloads.

This package coordinates a fleet of peer pods with:
- Lease-based leader election
- Role labels (master/slave) propagated onto pod metadata
- Discovery of instances, the current master and batch jobs
- Batch job lifecycle owned by the elected leader
"""

__version__ = "0.1.0"

from lector.service import CoordinationService, create_service

__all__ = [
    "CoordinationService",
    "create_service",
]
