"""
Job controller.

Creates, watches and retires batch jobs on behalf of an owner instance.
Jobs never restart: a failure is terminal and only visible through the
job status.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping, Optional

from lector.cluster.client import ClusterClient
from lector.cluster.labels import APP_LABEL, JobLabels
from lector.cluster.metadata import BatchJob
from lector.discovery.directory import InstanceDirectory
from lector.errors import ClusterError, NotFoundError, ValidationError
from lector.jobs.watch import JobWatch
from lector.utils.logging import get_logger

logger = get_logger(__name__)


def render_args(args: Optional[Mapping[str, str]]) -> List[str]:
    """
    Render container arguments as --key=value, sorted by key.

    Args:
        args: Argument mapping

    Returns:
        Argument tokens
    """
    return [f"--{key}={value}" for key, value in sorted((args or {}).items())]


class JobController:
    """
    Batch job lifecycle for a leader instance.

    Responsibilities:
    - Create jobs inheriting the owner's environment
    - Delete (suspend) jobs with background cascade
    - Stream job events
    - Clear finished and failed jobs past a retention period
    """

    def __init__(
        self,
        cluster: ClusterClient,
        directory: InstanceDirectory,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize job controller.

        Args:
            cluster: Shared cluster client
            directory: Directory used to resolve owners and bucket jobs
            clock: Returns the current time (timezone-aware)
        """
        self._cluster = cluster
        self.directory = directory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def create_new_job(
        self,
        owner: str,
        job_name: str,
        image: str,
        args: Optional[Mapping[str, str]] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> BatchJob:
        """
        Create a job owned by an instance.

        The job is labeled parent=<owner> and app=<job_name>; those two
        keys override anything in labels.

        Args:
            owner: Owner instance name
            job_name: Job name, also the job's app label
            image: Container image
            args: Container arguments, rendered as --key=value
            labels: Extra job labels

        Returns:
            Created job

        Raises:
            ValidationError: If owner, job_name or image is empty
            NotFoundError: If the owner instance does not exist
            ClusterError: If the job could not be created
        """
        if not owner:
            raise ValidationError("empty pod parent name")

        if not job_name:
            raise ValidationError("empty job name")

        if not image:
            raise ValidationError("empty image")

        try:
            instance = await self.directory.get_instance_info(owner)
        except NotFoundError as e:
            raise NotFoundError(f"err create job: {e}") from e
        except ClusterError as e:
            raise ClusterError(f"err create job: {e}", status=e.status) from e

        prefix = f"{instance.name}-{job_name}"
        job = BatchJob(
            namespace=self._cluster.namespace,
            generate_name=prefix,
            labels=JobLabels(app=job_name, parent=instance.name, extra=dict(labels or {})).to_dict(),
            template_labels={APP_LABEL: job_name},
            container_name=f"{job_name}-jb",
            image=image,
            args=render_args(args),
            env=list(instance.env),
            backoff_limit=0,
            restart_policy="Never",
        )

        try:
            created = await self._cluster.create_job(job)
        except ClusterError as e:
            raise ClusterError(f"err create job: {e}", status=e.status) from e

        logger.info(
            "Created job",
            job=created.name,
            owner=owner,
            app=job_name,
            image=image,
        )

        return created

    async def suspend_job(self, name: str) -> None:
        """
        Delete a job; its pods are reclaimed in the background.

        Raises:
            ClusterError: If the delete failed, including when the job
                no longer exists
        """
        try:
            await self._cluster.delete_job(name, propagation_policy="Background")
        except ClusterError as e:
            raise ClusterError(f"err suspend job {name}: {e}", status=e.status) from e

        logger.info("Suspended job", job=name)

    async def watch_job(
        self,
        name: str,
        selector: Optional[Mapping[str, str]] = None,
    ) -> JobWatch:
        """
        Stream events for jobs of an application.

        Args:
            name: Value forced onto the app label of the selector
            selector: Additional required labels

        Returns:
            Started watch; the caller must close it

        Raises:
            ClusterError: If the watch could not be opened
        """
        labels: Dict[str, str] = dict(selector or {})
        labels[APP_LABEL] = name

        try:
            events, stop = self._cluster.watch_jobs(labels)
        except ClusterError as e:
            raise ClusterError(f"could not start watcher: {e}", status=e.status) from e

        return JobWatch(events, stop, selector=labels).start()

    async def clear_job_history(self, name: str, retention: timedelta) -> List[str]:
        """
        Delete finished and failed jobs older than retention.

        Finished jobs age from their completion time, failed jobs from the
        first condition transition older than retention. Pending jobs are
        never touched. The first failed delete stops the sweep; jobs
        deleted before it stay deleted.

        Args:
            name: Application name of the jobs
            retention: How long to keep a job after it ended

        Returns:
            Names of deleted jobs

        Raises:
            ClusterError: If listing or a delete failed
        """
        try:
            buckets = await self.directory.get_jobs(name)
        except ClusterError as e:
            raise ClusterError(f"err clear history get completed jobs: {e}", status=e.status) from e

        now = self._clock()
        deleted: List[str] = []

        for job in buckets.finished:
            completed = job.status.completion_time
            if completed is not None and now > completed + retention:
                await self._suspend_for_history(job.name)
                deleted.append(job.name)

        for job in buckets.failed:
            for condition in job.status.conditions:
                changed = condition.last_transition_time
                if changed is not None and now > changed + retention:
                    await self._suspend_for_history(job.name)
                    deleted.append(job.name)
                    break

        if deleted:
            logger.info("Cleared job history", app=name, deleted=deleted)

        return deleted

    async def _suspend_for_history(self, name: str) -> None:
        try:
            await self.suspend_job(name)
        except ClusterError as e:
            raise ClusterError(f"err clear history delete job {name}: {e}", status=e.status) from e
