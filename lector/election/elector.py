"""
Lease coordinator.

Runs the election loop and keeps the role label of this process's
instance in line with the lease:

    Unlabeled -> slave -> master -> slave -> ...

There is no lock around the labels. Two instances can both be labeled
master for a moment during a lease handoff; InstanceDirectory reports
that state instead of hiding it.
"""

from dataclasses import replace
from typing import Optional, Tuple

from lector.cluster.client import ClusterClient
from lector.cluster.labels import APP_LABEL, ROLE_LABEL, Role
from lector.cluster.metadata import Instance
from lector.discovery.directory import InstanceDirectory
from lector.election.lease import (
    ElectionHandler,
    KubernetesLeaseElector,
    LeaseConfig,
    LeaseElector,
)
from lector.election.retry import update_with_conflict_retry
from lector.errors import LectorError, ValidationError
from lector.utils.logging import get_logger
from lector.utils.signals import ShutdownSignal

logger = get_logger(__name__)


class RolePropagatingHandler(ElectionHandler):
    """
    Writes the role label of an instance before forwarding each
    transition to the caller's handler.

    Label failures are logged and never interrupt the election.
    """

    def __init__(
        self,
        coordinator: "LeaseCoordinator",
        identity: str,
        delegate: ElectionHandler,
    ):
        self._coordinator = coordinator
        self.identity = identity
        self._delegate = delegate

    async def on_acquired(self) -> None:
        await self._apply_role(Role.MASTER)
        await self._delegate.on_acquired()

    async def on_holder_changed(self, identity: str) -> None:
        if identity != self.identity:
            await self._apply_role(Role.SLAVE)
        await self._delegate.on_holder_changed(identity)

    async def on_lost(self) -> None:
        await self._apply_role(Role.SLAVE)
        await self._delegate.on_lost()

    async def _apply_role(self, role: Role) -> None:
        """Label this instance with role unless it already carries it."""
        try:
            instance = await self._coordinator.directory.get_instance_info(self.identity)

            if instance.role == role:
                return

            if role == Role.MASTER:
                await self._coordinator.set_master_label(instance)
            else:
                await self._coordinator.set_slave_label(instance)

            logger.info("Role label updated", instance=self.identity, role=role.value)

        except LectorError as e:
            logger.error(
                "Failed to propagate role label",
                instance=self.identity,
                role=role.value,
                error=str(e),
            )


class LeaseCoordinator:
    """
    Leader election and role-label propagation.

    Wraps a LeaseElector and owns the role label vocabulary. Every
    cooperating instance must use the same labels for the single-master
    invariant to hold.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        directory: InstanceDirectory,
        lease_elector: Optional[LeaseElector] = None,
        lease_duration: float = 15.0,
        renew_deadline: float = 10.0,
        retry_period: float = 2.0,
        release_on_cancel: bool = True,
        propagate_roles: bool = True,
        label_retries: int = 5,
        label_retry_interval: float = 1.0,
    ):
        """
        Initialize lease coordinator.

        Args:
            cluster: Shared cluster client
            directory: Directory used to re-fetch instances
            lease_elector: Election primitive (defaults to a Lease object)
            lease_duration: Seconds a lease is valid after renewal
            renew_deadline: Seconds the leader retries a renewal
            retry_period: Seconds between election attempts
            release_on_cancel: Release the lease on shutdown
            propagate_roles: Write role labels on election transitions
            label_retries: Retries of a conflicting label write
            label_retry_interval: Seconds between label write retries
        """
        self._cluster = cluster
        self.directory = directory
        self.lease_elector = lease_elector or KubernetesLeaseElector(cluster)

        self.lease_duration = lease_duration
        self.renew_deadline = renew_deadline
        self.retry_period = retry_period
        self.release_on_cancel = release_on_cancel
        self.propagate_roles = propagate_roles

        self.label_retries = label_retries
        self.label_retry_interval = label_retry_interval

    @property
    def namespace(self) -> str:
        return self._cluster.namespace

    # Label vocabulary

    @staticmethod
    def get_master_labels() -> Tuple[str, str]:
        """Role label marking the leader."""
        return Role.MASTER.label()

    @staticmethod
    def get_slave_labels() -> Tuple[str, str]:
        """Role label marking a follower."""
        return Role.SLAVE.label()

    @staticmethod
    def get_app_label() -> str:
        """Label key holding the application name."""
        return APP_LABEL

    # Election

    def lease_config(self, identity: str, election_name: str) -> LeaseConfig:
        """Build the lease configuration for an election."""
        return LeaseConfig(
            name=f"{election_name}-lock",
            namespace=self.namespace,
            identity=identity,
            lease_duration=self.lease_duration,
            renew_deadline=self.renew_deadline,
            retry_period=self.retry_period,
            release_on_cancel=self.release_on_cancel,
        )

    async def start_election(
        self,
        identity: str,
        handler: ElectionHandler,
        election_name: str,
        shutdown: ShutdownSignal,
    ) -> None:
        """
        Contend for leadership until shutdown.

        Blocks until shutdown is cancelled or the election primitive
        fails. The shutdown token is always cancelled on return so that
        work started from the callbacks winds down as well.

        Args:
            identity: Holder identity, the instance name of this process
            handler: Receives election transitions
            election_name: Election scope; the lease is "<name>-lock"
            shutdown: Cancellation token

        Raises:
            ValidationError: If identity is empty
        """
        try:
            if not identity:
                raise ValidationError("empty identity")

            config = self.lease_config(identity, election_name)

            if self.propagate_roles:
                handler = RolePropagatingHandler(self, identity, handler)

            logger.info(
                "Starting election",
                election=election_name,
                identity=identity,
                namespace=self.namespace,
            )

            await self.lease_elector.run(config, handler, shutdown)
        finally:
            shutdown.cancel("election finished")

    # Role labels

    async def set_master_label(self, instance: Instance) -> Instance:
        """
        Label an instance as master.

        Raises:
            RetryExhaustedError: If every conflict retry failed
            ClusterError: On any other write failure
        """
        return await self._set_role(instance, Role.MASTER)

    async def set_slave_label(self, instance: Instance) -> Instance:
        """
        Label an instance as slave.

        Raises:
            RetryExhaustedError: If every conflict retry failed
            ClusterError: On any other write failure
        """
        return await self._set_role(instance, Role.SLAVE)

    async def _set_role(self, instance: Instance, role: Role) -> Instance:
        def mutate(current: Instance) -> Instance:
            return replace(current, labels={**current.labels, ROLE_LABEL: role.value})

        async def fetch(current: Instance) -> Instance:
            return await self.directory.get_instance_info(current.name)

        return await update_with_conflict_retry(
            instance,
            mutate=mutate,
            write=self._cluster.update_pod_labels,
            fetch=fetch,
            max_retries=self.label_retries,
            interval=self.label_retry_interval,
            operation_name=f"set {role.value} label",
        )
