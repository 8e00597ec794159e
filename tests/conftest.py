"""Shared fixtures: an in-memory cluster standing in for the Kubernetes API."""

import copy
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Mapping, Optional

import pytest

from lector.cluster.metadata import (
    BatchJob,
    Container,
    EnvVar,
    Instance,
    JobCondition,
    JobEvent,
    JobStatus,
    LeaseRecord,
)
from lector.discovery.directory import InstanceDirectory
from lector.errors import ConflictError, NotFoundError


def utc(*args) -> datetime:
    """Build a timezone-aware UTC datetime."""
    return datetime(*args, tzinfo=timezone.utc)


def make_job(
    name: str,
    app: str = "report",
    parent: str = "web-0",
    succeeded: int = 0,
    failed: int = 0,
    completion_time: Optional[datetime] = None,
    condition_times: Optional[List[datetime]] = None,
) -> BatchJob:
    """Build a job record with the given status."""
    return BatchJob(
        name=name,
        namespace="default",
        labels={"app": app, "parent": parent},
        image="busybox",
        status=JobStatus(
            succeeded=succeeded,
            failed=failed,
            completion_time=completion_time,
            conditions=[
                JobCondition(type="Failed", status="True", last_transition_time=when)
                for when in condition_times or []
            ],
        ),
    )


def _matches(labels: Mapping[str, str], selector: Mapping[str, str]) -> bool:
    return all(labels.get(key) == value for key, value in selector.items())


class FakeClusterClient:
    """
    In-memory stand-in for ClusterClient.
    
    Records every call in `calls` and every mutating call in `mutations`.
    Errors queued in `update_errors` are raised by successive
    update_pod_labels calls; `errors` maps a method name to an error raised
    by every call of that method.
    """
    
    MUTATING = {"update_pod_labels", "create_job", "delete_job", "create_lease", "update_lease"}
    
    def __init__(self, namespace: str = "default"):
        self.namespace = namespace
        self.pods: Dict[str, Instance] = {}
        self.jobs: Dict[str, BatchJob] = {}
        self.leases: Dict[str, LeaseRecord] = {}
        
        self.calls: List[tuple] = []
        self.mutations: List[tuple] = []
        self.errors: Dict[str, Exception] = {}
        self.update_errors: List[Exception] = []
        
        self.watch_events: List[JobEvent] = []
        self.watch_error: Optional[Exception] = None
        self.watch_selectors: List[dict] = []
        self.watch_stopped = False
        self.closed = False
        
        self._version = 0
        self._job_suffix = 0
    
    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)
    
    def _record(self, method: str, *args) -> None:
        self.calls.append((method,) + args)
        if method in self.MUTATING:
            self.mutations.append((method,) + args)
        if method in self.errors:
            raise self.errors[method]
    
    # Seeding helpers
    
    def add_pod(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None,
        env: Optional[List[List[EnvVar]]] = None,
    ) -> Instance:
        containers = [
            Container(name=f"c{index}", image="app:latest", env=entries)
            for index, entries in enumerate(env or [[]])
        ]
        instance = Instance(
            name=name,
            namespace=self.namespace,
            labels=dict(labels or {}),
            containers=containers,
            resource_version=self._next_version(),
            phase="Running",
        )
        self.pods[name] = instance
        return copy.deepcopy(instance)
    
    def add_job(self, job: BatchJob) -> BatchJob:
        job.resource_version = self._next_version()
        self.jobs[job.name] = job
        return job
    
    # Pods
    
    async def get_pod(self, name: str) -> Instance:
        self._record("get_pod", name)
        if name not in self.pods:
            raise NotFoundError(f"get pod {name}: Not Found")
        return copy.deepcopy(self.pods[name])
    
    async def list_pods(self, selector: Mapping[str, str]) -> List[Instance]:
        self._record("list_pods", dict(selector))
        return [copy.deepcopy(pod) for pod in self.pods.values() if _matches(pod.labels, selector)]
    
    async def update_pod_labels(self, instance: Instance) -> Instance:
        self._record("update_pod_labels", instance.name)
        if self.update_errors:
            raise self.update_errors.pop(0)
        stored = self.pods.get(instance.name)
        if stored is None:
            raise NotFoundError(f"update pod {instance.name}: Not Found")
        if stored.resource_version != instance.resource_version:
            raise ConflictError(f"update pod {instance.name}: Conflict")
        stored.labels = dict(instance.labels)
        stored.resource_version = self._next_version()
        return copy.deepcopy(stored)
    
    # Jobs
    
    async def get_job(self, name: str) -> BatchJob:
        self._record("get_job", name)
        if name not in self.jobs:
            raise NotFoundError(f"get job {name}: Not Found")
        return copy.deepcopy(self.jobs[name])
    
    async def list_jobs(self, selector: Mapping[str, str]) -> List[BatchJob]:
        self._record("list_jobs", dict(selector))
        return [copy.deepcopy(job) for job in self.jobs.values() if _matches(job.labels, selector)]
    
    async def create_job(self, job: BatchJob) -> BatchJob:
        self._record("create_job", job.generate_name)
        self._job_suffix += 1
        created = copy.deepcopy(job)
        created.name = f"{job.generate_name}{self._job_suffix:05d}"
        return self.add_job(created)
    
    async def delete_job(self, name: str, propagation_policy: str = "Background") -> None:
        self._record("delete_job", name, propagation_policy)
        if name not in self.jobs:
            raise NotFoundError(f"delete job {name}: Not Found")
        del self.jobs[name]
    
    def watch_jobs(self, selector: Mapping[str, str]):
        self.watch_selectors.append(dict(selector))
        events = list(self.watch_events)
        error = self.watch_error
        
        def stream() -> Iterator[JobEvent]:
            for event in events:
                if self.watch_stopped:
                    return
                yield event
            if error is not None:
                raise error
        
        def stop() -> None:
            self.watch_stopped = True
        
        return stream(), stop
    
    # Leases
    
    async def get_lease(self, name: str) -> LeaseRecord:
        self._record("get_lease", name)
        if name not in self.leases:
            raise NotFoundError(f"get lease {name}: Not Found")
        return copy.deepcopy(self.leases[name])
    
    async def create_lease(self, record: LeaseRecord) -> LeaseRecord:
        self._record("create_lease", record.name)
        if record.name in self.leases:
            raise ConflictError(f"create lease {record.name}: AlreadyExists")
        stored = copy.deepcopy(record)
        stored.resource_version = self._next_version()
        self.leases[record.name] = stored
        return copy.deepcopy(stored)
    
    async def update_lease(self, record: LeaseRecord) -> LeaseRecord:
        self._record("update_lease", record.name, record.holder_identity)
        stored = self.leases.get(record.name)
        if stored is None:
            raise NotFoundError(f"update lease {record.name}: Not Found")
        if stored.resource_version != record.resource_version:
            raise ConflictError(f"update lease {record.name}: Conflict")
        updated = copy.deepcopy(record)
        updated.resource_version = self._next_version()
        self.leases[record.name] = updated
        return copy.deepcopy(updated)
    
    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def cluster():
    """In-memory cluster in namespace "default"."""
    return FakeClusterClient()


@pytest.fixture
def directory(cluster):
    """Directory over the fake cluster; this process runs as web-0."""
    return InstanceDirectory(cluster, current_instance="web-0")
