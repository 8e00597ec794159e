"""
Cluster object metadata.

Typed views of the pods, jobs and leases lector reads and writes, with
conversions to and from the kubernetes client models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from kubernetes import client

from lector.cluster.labels import APP_LABEL, PARENT_LABEL, Role, role_of


@dataclass
class EnvVar:
    """
    Container environment entry.

    Attributes:
        name: Variable name
        value: Literal value
        value_from: Source reference (V1EnvVarSource), passed through as-is
    """
    name: str
    value: Optional[str] = None
    value_from: Any = None

    @classmethod
    def from_model(cls, env: client.V1EnvVar) -> "EnvVar":
        return cls(name=env.name, value=env.value, value_from=env.value_from)

    def to_model(self) -> client.V1EnvVar:
        return client.V1EnvVar(name=self.name, value=self.value, value_from=self.value_from)


@dataclass
class Container:
    """Declared container of an instance."""
    name: str
    image: Optional[str] = None
    env: List[EnvVar] = field(default_factory=list)


@dataclass
class Instance:
    """
    A running replica registered in the cluster (a pod).

    Only the label mapping is ever mutated by lector.

    Attributes:
        name: Unique pod name
        namespace: Pod namespace
        labels: Mutable label mapping
        containers: Declared containers, in spec order
        resource_version: Version used for optimistic-concurrency writes
        phase: Pod phase reported by the cluster
    """
    name: str
    namespace: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    containers: List[Container] = field(default_factory=list)
    resource_version: Optional[str] = None
    phase: Optional[str] = None

    @property
    def role(self) -> Optional[Role]:
        """Current role assignment derived from labels."""
        return role_of(self.labels)

    @property
    def app(self) -> Optional[str]:
        """Application name from the app label."""
        return self.labels.get(APP_LABEL)

    @property
    def env(self) -> List[EnvVar]:
        """Environment of all containers, concatenated in container order."""
        return [entry for container in self.containers for entry in container.env]

    @classmethod
    def from_pod(cls, pod: client.V1Pod) -> "Instance":
        """Build from a V1Pod."""
        metadata = pod.metadata
        containers = []
        if pod.spec is not None:
            for container in pod.spec.containers or []:
                containers.append(
                    Container(
                        name=container.name,
                        image=container.image,
                        env=[EnvVar.from_model(env) for env in container.env or []],
                    )
                )

        return cls(
            name=metadata.name,
            namespace=metadata.namespace or "",
            labels=dict(metadata.labels or {}),
            containers=containers,
            resource_version=metadata.resource_version,
            phase=pod.status.phase if pod.status is not None else None,
        )


class JobState(str, Enum):
    """Lifecycle state of a batch job, computed from its status counters."""

    FINISHED = "finished"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class JobCondition:
    """Status condition reported by the job runtime."""
    type: str
    status: str
    last_transition_time: Optional[datetime] = None
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass
class JobStatus:
    """
    Job status counters and timestamps.

    Attributes:
        succeeded: Pods that completed successfully
        failed: Pods that failed
        active: Pods still running
        start_time: When the job started
        completion_time: When the job finished successfully
        conditions: Status conditions
    """
    succeeded: int = 0
    failed: int = 0
    active: int = 0
    start_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    conditions: List[JobCondition] = field(default_factory=list)


@dataclass
class BatchJob:
    """
    A one-shot unit of work owned by an instance.

    Attributes:
        name: Server-assigned name (empty until created)
        namespace: Job namespace
        labels: Job labels, including app and parent
        image: Container image
        args: Container arguments
        env: Container environment
        container_name: Name of the single container
        generate_name: Name prefix used on creation
        template_labels: Labels on the pod template
        backoff_limit: Retry budget of the job runtime
        restart_policy: Pod restart policy
        status: Runtime status
        resource_version: Object version
    """
    name: str = ""
    namespace: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    image: Optional[str] = None
    args: List[str] = field(default_factory=list)
    env: List[EnvVar] = field(default_factory=list)
    container_name: Optional[str] = None
    generate_name: Optional[str] = None
    template_labels: Dict[str, str] = field(default_factory=dict)
    backoff_limit: int = 0
    restart_policy: str = "Never"
    status: JobStatus = field(default_factory=JobStatus)
    resource_version: Optional[str] = None

    @property
    def state(self) -> JobState:
        """Lifecycle state; success wins over failure."""
        if self.status.succeeded > 0:
            return JobState.FINISHED
        if self.status.failed > 0:
            return JobState.FAILED
        return JobState.PENDING

    @property
    def parent(self) -> Optional[str]:
        """Owner instance name."""
        return self.labels.get(PARENT_LABEL)

    @property
    def app(self) -> Optional[str]:
        """Job name from the app label."""
        return self.labels.get(APP_LABEL)

    def to_model(self) -> client.V1Job:
        """Build the V1Job manifest submitted on creation."""
        return client.V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=client.V1ObjectMeta(
                name=self.name or None,
                generate_name=self.generate_name,
                namespace=self.namespace,
                labels=dict(self.labels),
            ),
            spec=client.V1JobSpec(
                backoff_limit=self.backoff_limit,
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(
                        generate_name=self.generate_name,
                        labels=dict(self.template_labels),
                    ),
                    spec=client.V1PodSpec(
                        containers=[
                            client.V1Container(
                                name=self.container_name,
                                image=self.image,
                                args=list(self.args),
                                env=[entry.to_model() for entry in self.env],
                            )
                        ],
                        restart_policy=self.restart_policy,
                    ),
                ),
            ),
        )

    @classmethod
    def from_model(cls, job: client.V1Job) -> "BatchJob":
        """Build from a V1Job."""
        metadata = job.metadata
        spec = job.spec

        image = None
        args: List[str] = []
        env: List[EnvVar] = []
        container_name = None
        template_labels: Dict[str, str] = {}
        restart_policy = "Never"
        backoff_limit = 0

        if spec is not None:
            if spec.backoff_limit is not None:
                backoff_limit = spec.backoff_limit
            template = spec.template
            if template is not None:
                if template.metadata is not None:
                    template_labels = dict(template.metadata.labels or {})
                if template.spec is not None:
                    restart_policy = template.spec.restart_policy or restart_policy
                    containers = template.spec.containers or []
                    if containers:
                        container = containers[0]
                        container_name = container.name
                        image = container.image
                        args = list(container.args or [])
                        env = [EnvVar.from_model(entry) for entry in container.env or []]

        status = JobStatus()
        if job.status is not None:
            status = JobStatus(
                succeeded=job.status.succeeded or 0,
                failed=job.status.failed or 0,
                active=job.status.active or 0,
                start_time=job.status.start_time,
                completion_time=job.status.completion_time,
                conditions=[
                    JobCondition(
                        type=cond.type,
                        status=cond.status,
                        last_transition_time=cond.last_transition_time,
                        reason=cond.reason,
                        message=cond.message,
                    )
                    for cond in job.status.conditions or []
                ],
            )

        return cls(
            name=metadata.name or "",
            namespace=metadata.namespace or "",
            labels=dict(metadata.labels or {}),
            image=image,
            args=args,
            env=env,
            container_name=container_name,
            generate_name=metadata.generate_name,
            template_labels=template_labels,
            backoff_limit=backoff_limit,
            restart_policy=restart_policy,
            status=status,
            resource_version=metadata.resource_version,
        )


class JobEventType(str, Enum):
    """Watch event types surfaced to callers."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class JobEvent:
    """A change to a watched job."""
    type: JobEventType
    job: BatchJob


@dataclass
class LeaseRecord:
    """
    Election lease state.

    Attributes:
        name: Lease object name
        namespace: Lease namespace
        holder_identity: Current holder, empty when released
        lease_duration_seconds: How long the holder owns the lease after renewing
        acquire_time: When the current holder acquired it
        renew_time: Last renewal by the holder
        lease_transitions: Number of holder changes
        resource_version: Object version for optimistic concurrency
    """
    name: str
    namespace: str
    holder_identity: str = ""
    lease_duration_seconds: int = 0
    acquire_time: Optional[datetime] = None
    renew_time: Optional[datetime] = None
    lease_transitions: int = 0
    resource_version: Optional[str] = None

    @classmethod
    def from_model(cls, lease: client.V1Lease) -> "LeaseRecord":
        """Build from a V1Lease."""
        spec = lease.spec or client.V1LeaseSpec()
        return cls(
            name=lease.metadata.name,
            namespace=lease.metadata.namespace or "",
            holder_identity=spec.holder_identity or "",
            lease_duration_seconds=spec.lease_duration_seconds or 0,
            acquire_time=spec.acquire_time,
            renew_time=spec.renew_time,
            lease_transitions=spec.lease_transitions or 0,
            resource_version=lease.metadata.resource_version,
        )

    def to_model(self) -> client.V1Lease:
        """Build a V1Lease carrying this record's version."""
        return client.V1Lease(
            api_version="coordination.k8s.io/v1",
            kind="Lease",
            metadata=client.V1ObjectMeta(
                name=self.name,
                namespace=self.namespace,
                resource_version=self.resource_version,
            ),
            spec=client.V1LeaseSpec(
                holder_identity=self.holder_identity,
                lease_duration_seconds=self.lease_duration_seconds,
                acquire_time=self.acquire_time,
                renew_time=self.renew_time,
                lease_transitions=self.lease_transitions,
            ),
        )
