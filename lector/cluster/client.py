"""
Async cluster client.

Wraps the blocking kubernetes client: every API call runs on a thread pool
so the event loop running the election stays responsive. This is the only
module that sees ApiException; it is translated into lector errors here.
"""

import asyncio
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Iterator, List, Mapping, Optional, Tuple, TypeVar

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.watch.watch import iter_resp_lines

from lector.cluster.labels import selector_from_set
from lector.cluster.metadata import (
    BatchJob,
    Instance,
    JobEvent,
    JobEventType,
    LeaseRecord,
)
from lector.errors import ClusterError, ConfigurationError, ConflictError, NotFoundError
from lector.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Event stream and the callable that stops it
WatchStream = Tuple[Iterator[JobEvent], Callable[[], None]]


class JobEventStream:
    """
    Job watch over a raw HTTP response.

    The response is kept so that stop() can shut the connection down
    from another thread while a read is blocked on it.
    """

    def __init__(self, batch: client.BatchV1Api, namespace: str, label_selector: str):
        self._batch = batch
        self._namespace = namespace
        self._label_selector = label_selector
        self._watcher = watch.Watch()
        self._lock = threading.Lock()
        self._response = None
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def __iter__(self) -> Iterator[JobEvent]:
        try:
            response = self._batch.list_namespaced_job(
                self._namespace,
                label_selector=self._label_selector,
                watch=True,
                _preload_content=False,
            )
        except ApiException as e:
            raise translate_api_error(e, "watch jobs") from e

        with self._lock:
            self._response = response
            stopped = self._stopped

        try:
            if stopped:
                return

            for line in iter_resp_lines(response):
                if self._stopped:
                    return

                event = self._watcher.unmarshal_event(line, "V1Job")
                if event is None:
                    continue

                event_type = event.get("type")
                if event_type == "ERROR":
                    raw = event.get("raw_object") or {}
                    raise ClusterError(
                        f"watch jobs: {raw.get('message', 'error event')}",
                        status=raw.get("code"),
                    )
                if event_type not in JobEventType.__members__:
                    continue

                yield JobEvent(
                    type=JobEventType(event_type),
                    job=BatchJob.from_model(event["object"]),
                )
        except ClusterError:
            raise
        except Exception as e:
            # A read interrupted by stop() is the normal end of the stream
            if self._stopped:
                return
            if isinstance(e, ApiException):
                raise translate_api_error(e, "watch jobs") from e
            raise ClusterError(f"watch jobs: {e}") from e
        finally:
            response.close()
            response.release_conn()

    def stop(self) -> None:
        """End the stream and unblock a pending read."""
        with self._lock:
            self._stopped = True
            response = self._response

        if response is None:
            return

        sock = _response_socket(response)
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Already disconnected
                pass
        else:
            response.close()


def _response_socket(response) -> Optional[socket.socket]:
    """Raw socket under a urllib3 response, if still connected."""
    connection = getattr(response, "connection", None) or getattr(response, "_connection", None)
    sock = getattr(connection, "sock", None)
    return sock if isinstance(sock, socket.socket) else None


def translate_api_error(err: ApiException, operation: str) -> ClusterError:
    """
    Map an API failure onto the lector error taxonomy.

    Args:
        err: Exception raised by the kubernetes client
        operation: Description of the failed call, used as message prefix

    Returns:
        NotFoundError, ConflictError or ClusterError
    """
    message = f"{operation}: {err.reason}" if err.reason else operation

    if err.status == 404:
        return NotFoundError(message)
    if err.status == 409:
        return ConflictError(message)
    return ClusterError(message, status=err.status)


def load_kube_config(
    in_cluster: bool = True,
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
) -> client.ApiClient:
    """
    Build an API client from the pod service account or a kubeconfig.

    Args:
        in_cluster: Use the in-cluster service account
        kubeconfig: Path to a kubeconfig file (when not in cluster)
        context: Kubeconfig context name

    Returns:
        Configured ApiClient

    Raises:
        ConfigurationError: If no usable configuration was found
    """
    configuration = client.Configuration()

    try:
        if in_cluster:
            config.load_incluster_config(client_configuration=configuration)
        else:
            config.load_kube_config(
                config_file=kubeconfig,
                context=context,
                client_configuration=configuration,
            )
    except ConfigException as e:
        raise ConfigurationError(f"error loading cluster configuration: {e}") from e

    return client.ApiClient(configuration)


class ClusterClient:
    """
    Namespace-scoped access to pods, jobs and leases.

    All methods are coroutines. Returned objects are lector dataclasses,
    never raw kubernetes models.
    """

    def __init__(
        self,
        namespace: str,
        api_client: Optional[client.ApiClient] = None,
        workers: int = 4,
    ):
        """
        Initialize cluster client.

        Args:
            namespace: Namespace every call is scoped to
            api_client: Configured kubernetes ApiClient
            workers: Thread pool size for blocking API calls
        """
        self.namespace = namespace
        self.api_client = api_client

        self.core = client.CoreV1Api(api_client)
        self.batch = client.BatchV1Api(api_client)
        self.coordination = client.CoordinationV1Api(api_client)

        self._executor = ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="cluster-api",
        )

        logger.info("ClusterClient initialized", namespace=namespace)

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run a blocking API call on the thread pool.

        Args:
            operation: Description for error messages
            fn: kubernetes client method

        Returns:
            The method's result
        """
        loop = asyncio.get_running_loop()

        try:
            return await loop.run_in_executor(self._executor, partial(fn, *args, **kwargs))
        except ApiException as e:
            raise translate_api_error(e, operation) from e

    # Pods

    async def get_pod(self, name: str) -> Instance:
        """Read one pod by name."""
        pod = await self._call(
            f"get pod {name}",
            self.core.read_namespaced_pod,
            name,
            self.namespace,
        )
        return Instance.from_pod(pod)

    async def list_pods(self, selector: Mapping[str, str]) -> List[Instance]:
        """List pods matching every label in selector."""
        pods = await self._call(
            "list pods",
            self.core.list_namespaced_pod,
            self.namespace,
            label_selector=selector_from_set(selector),
        )
        return [Instance.from_pod(pod) for pod in pods.items]

    async def update_pod_labels(self, instance: Instance) -> Instance:
        """
        Write an instance's labels, guarded by its resource version.

        Args:
            instance: Instance carrying the desired labels

        Returns:
            The updated instance

        Raises:
            ConflictError: If the pod changed since it was read
        """
        body = {
            "metadata": {
                "labels": dict(instance.labels),
                "resourceVersion": instance.resource_version,
            }
        }
        pod = await self._call(
            f"update pod {instance.name}",
            self.core.patch_namespaced_pod,
            instance.name,
            self.namespace,
            body,
        )
        return Instance.from_pod(pod)

    # Jobs

    async def get_job(self, name: str) -> BatchJob:
        """Read one job by name."""
        job = await self._call(
            f"get job {name}",
            self.batch.read_namespaced_job,
            name,
            self.namespace,
        )
        return BatchJob.from_model(job)

    async def list_jobs(self, selector: Mapping[str, str]) -> List[BatchJob]:
        """List jobs matching every label in selector."""
        jobs = await self._call(
            "list jobs",
            self.batch.list_namespaced_job,
            self.namespace,
            label_selector=selector_from_set(selector),
        )
        return [BatchJob.from_model(job) for job in jobs.items]

    async def create_job(self, job: BatchJob) -> BatchJob:
        """Submit a job and return the created record."""
        created = await self._call(
            "create job",
            self.batch.create_namespaced_job,
            self.namespace,
            job.to_model(),
        )
        return BatchJob.from_model(created)

    async def delete_job(self, name: str, propagation_policy: str = "Background") -> None:
        """
        Delete a job.

        Args:
            name: Job name
            propagation_policy: How dependents (pods) are reclaimed
        """
        await self._call(
            f"delete job {name}",
            self.batch.delete_namespaced_job,
            name,
            self.namespace,
            body=client.V1DeleteOptions(propagation_policy=propagation_policy),
        )

    def watch_jobs(self, selector: Mapping[str, str]) -> WatchStream:
        """
        Open a blocking event stream over jobs matching selector.

        The iterator blocks between events; consume it from a worker
        thread. The request is sent on first iteration. Calling the
        returned stop function closes the connection, which also ends an
        iteration blocked waiting for the next event.

        Args:
            selector: Required labels

        Returns:
            (events, stop)
        """
        stream = JobEventStream(self.batch, self.namespace, selector_from_set(selector))
        return iter(stream), stream.stop

    # Leases

    async def get_lease(self, name: str) -> LeaseRecord:
        """Read a lease by name."""
        lease = await self._call(
            f"get lease {name}",
            self.coordination.read_namespaced_lease,
            name,
            self.namespace,
        )
        return LeaseRecord.from_model(lease)

    async def create_lease(self, record: LeaseRecord) -> LeaseRecord:
        """Create a lease; ConflictError if it already exists."""
        record.resource_version = None
        lease = await self._call(
            f"create lease {record.name}",
            self.coordination.create_namespaced_lease,
            self.namespace,
            record.to_model(),
        )
        return LeaseRecord.from_model(lease)

    async def update_lease(self, record: LeaseRecord) -> LeaseRecord:
        """Replace a lease; ConflictError if its version moved."""
        lease = await self._call(
            f"update lease {record.name}",
            self.coordination.replace_namespaced_lease,
            record.name,
            self.namespace,
            record.to_model(),
        )
        return LeaseRecord.from_model(lease)

    async def close(self) -> None:
        """Release the thread pool and API connections."""
        self._executor.shutdown(wait=False)

        if self.api_client is not None:
            self.api_client.close()

        logger.info("ClusterClient closed", namespace=self.namespace)
