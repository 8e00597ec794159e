"""Cluster access: client, object metadata and the label schema."""

from lector.cluster.client import ClusterClient, load_kube_config
from lector.cluster.labels import (
    APP_LABEL,
    JOB_NAME_LABEL,
    PARENT_LABEL,
    ROLE_LABEL,
    JobLabels,
    Role,
)
from lector.cluster.metadata import (
    BatchJob,
    Container,
    EnvVar,
    Instance,
    JobCondition,
    JobEvent,
    JobEventType,
    JobState,
    JobStatus,
    LeaseRecord,
)

__all__ = [
    "ClusterClient",
    "load_kube_config",
    "APP_LABEL",
    "JOB_NAME_LABEL",
    "PARENT_LABEL",
    "ROLE_LABEL",
    "JobLabels",
    "Role",
    "BatchJob",
    "Container",
    "EnvVar",
    "Instance",
    "JobCondition",
    "JobEvent",
    "JobEventType",
    "JobState",
    "JobStatus",
    "LeaseRecord",
]
