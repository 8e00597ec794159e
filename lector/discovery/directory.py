"""
Instance directory.

Read-only queries over pods and batch jobs by label selector. Nothing in
this module mutates cluster state.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from lector.cluster.client import ClusterClient
from lector.cluster.labels import APP_LABEL, JOB_NAME_LABEL, Role
from lector.cluster.metadata import BatchJob, Instance, JobState
from lector.errors import CardinalityError, ClusterError, NotFoundError
from lector.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class JobBuckets:
    """
    Jobs of one application partitioned by lifecycle state.
    
    Buckets are disjoint and keep discovery order.
    """
    finished: List[BatchJob] = field(default_factory=list)
    failed: List[BatchJob] = field(default_factory=list)
    pending: List[BatchJob] = field(default_factory=list)
    
    def add(self, job: BatchJob) -> None:
        """Place a job in the bucket matching its state."""
        if job.state == JobState.FINISHED:
            self.finished.append(job)
        elif job.state == JobState.FAILED:
            self.failed.append(job)
        else:
            self.pending.append(job)
    
    def __len__(self) -> int:
        return len(self.finished) + len(self.failed) + len(self.pending)


class InstanceDirectory:
    """
    Discovery over workload instances and their jobs.
    
    Every query is scoped to the cluster client's namespace.
    """
    
    def __init__(self, cluster: ClusterClient, current_instance: Optional[str] = None):
        """
        Initialize instance directory.
        
        Args:
            cluster: Shared cluster client
            current_instance: Name of the pod running this process
        """
        self._cluster = cluster
        self.current_instance = current_instance
    
    async def get_current_instance(self) -> Instance:
        """
        Resolve the instance running this process.
        
        Returns:
            Current instance
        
        Raises:
            NotFoundError: If the identity is unset or the pod is absent
            ClusterError: On any other lookup failure
        """
        if not self.current_instance:
            raise NotFoundError("current instance name is not set")
        
        return await self.get_instance_info(self.current_instance)
    
    async def get_instance_info(self, name: str) -> Instance:
        """
        Fetch one instance by exact name.
        
        Args:
            name: Pod name
        
        Returns:
            Instance
        
        Raises:
            NotFoundError: If the instance does not exist
            ClusterError: On any other lookup failure
        """
        try:
            return await self._cluster.get_pod(name)
        except NotFoundError as e:
            raise NotFoundError(f"instance {name} not found") from e
        except ClusterError as e:
            raise ClusterError(f"error getting instance {name}: {e}", status=e.status) from e
    
    async def get_instances(self, app_name: str) -> List[Instance]:
        """
        List instances of an application.
        
        Args:
            app_name: Value of the app label
        
        Returns:
            Matching instances, possibly empty
        """
        try:
            return await self._cluster.list_pods({APP_LABEL: app_name})
        except ClusterError as e:
            raise ClusterError(f"error fetching instances: {e}", status=e.status) from e
    
    async def get_master_instance(self, app_name: str) -> Optional[Instance]:
        """
        Find the instance holding the master role.
        
        More than one match means the election protocol's single-master
        invariant was breached; that is reported, never resolved here.
        
        Args:
            app_name: Value of the app label
        
        Returns:
            Master instance, or None if there is none
        
        Raises:
            CardinalityError: If more than one instance is master
        """
        key, value = Role.MASTER.label()
        
        try:
            masters = await self._cluster.list_pods({key: value, APP_LABEL: app_name})
        except NotFoundError:
            return None
        except ClusterError as e:
            raise ClusterError(f"error fetching instances: {e}", status=e.status) from e
        
        if not masters:
            return None
        
        if len(masters) > 1:
            names = [instance.name for instance in masters]
            
            logger.error(
                "Multiple master instances found",
                app=app_name,
                instances=names,
            )
            
            raise CardinalityError(
                f"error instance count mismatch: {len(masters)} masters for app {app_name}",
                names=names,
            )
        
        return masters[0]
    
    async def get_jobs(self, app_name: str) -> JobBuckets:
        """
        List jobs of an application, partitioned by state.
        
        A job that succeeded is finished even if some pods failed.
        
        Args:
            app_name: Value of the app label
        
        Returns:
            Finished, failed and pending jobs
        """
        try:
            jobs = await self._cluster.list_jobs({APP_LABEL: app_name})
        except ClusterError as e:
            raise ClusterError(f"err get jobs: {e}", status=e.status) from e
        
        buckets = JobBuckets()
        for job in jobs:
            buckets.add(job)
        
        logger.debug(
            "Listed jobs",
            app=app_name,
            finished=len(buckets.finished),
            failed=len(buckets.failed),
            pending=len(buckets.pending),
        )
        
        return buckets
    
    async def get_job_by_name(self, name: str) -> BatchJob:
        """
        Fetch one job by name.
        
        Raises:
            NotFoundError: If the job does not exist
        """
        try:
            return await self._cluster.get_job(name)
        except NotFoundError:
            raise
        except ClusterError as e:
            raise ClusterError(f"err get job {name}: {e}", status=e.status) from e
    
    async def get_pods_by_job(self, job_name: str) -> List[Instance]:
        """List pods the job runtime created for a job."""
        try:
            return await self._cluster.list_pods({JOB_NAME_LABEL: job_name})
        except ClusterError as e:
            raise ClusterError(f"err get pods by job: {e}", status=e.status) from e
