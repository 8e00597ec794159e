"""
Lease-based election primitive.

The coordinator only depends on the LeaseElector interface: a lease
configuration (three durations plus identity) and an ElectionHandler
event sink. KubernetesLeaseElector is the default implementation backed
by a coordination.k8s.io Lease object and follows the client-go lease
lock record semantics:

- the lease is free when its holder is empty or it was not renewed
  within lease_duration of being observed
- the holder must renew within renew_deadline or it stops leading
- every attempt is spaced by retry_period
- on cancellation the holder clears the record so others can take over
  without waiting for expiry
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from lector.cluster.client import ClusterClient
from lector.cluster.metadata import LeaseRecord
from lector.errors import ClusterError, NotFoundError, ValidationError
from lector.utils.logging import get_logger
from lector.utils.signals import ShutdownSignal

logger = get_logger(__name__)

JITTER_FACTOR = 1.2


@dataclass
class LeaseConfig:
    """
    Election lease configuration.

    Attributes:
        name: Lease object name
        namespace: Lease namespace
        identity: Identity recorded as holder when this process leads
        lease_duration: Seconds a lease stays valid after its last renewal
        renew_deadline: Seconds the leader keeps retrying a renewal
        retry_period: Seconds between attempts
        release_on_cancel: Clear the holder when cancelled while leading
    """
    name: str
    namespace: str
    identity: str
    lease_duration: float = 15.0
    renew_deadline: float = 10.0
    retry_period: float = 2.0
    release_on_cancel: bool = True

    def validate(self) -> None:
        """
        Check durations are consistent.

        Raises:
            ValidationError: If identity is empty or durations overlap
        """
        if not self.identity:
            raise ValidationError("empty identity")

        if self.lease_duration <= self.renew_deadline:
            raise ValidationError("lease_duration must be greater than renew_deadline")

        if self.renew_deadline <= JITTER_FACTOR * self.retry_period:
            raise ValidationError("renew_deadline must be greater than retry_period * 1.2")


class ElectionHandler(ABC):
    """
    Receives election transitions.

    on_acquired runs as its own task for as long as the lease is held and
    is cancelled when leadership ends.
    """

    @abstractmethod
    async def on_acquired(self) -> None:
        """This identity became the leader."""

    @abstractmethod
    async def on_holder_changed(self, identity: str) -> None:
        """A new holder (possibly this identity) was observed."""

    @abstractmethod
    async def on_lost(self) -> None:
        """This identity stopped leading (lost or released the lease)."""


class LeaseElector(ABC):
    """Pluggable election primitive."""

    @abstractmethod
    async def run(
        self,
        config: LeaseConfig,
        handler: ElectionHandler,
        shutdown: ShutdownSignal,
    ) -> None:
        """
        Contend for the lease until shutdown is cancelled.

        Args:
            config: Lease configuration
            handler: Event sink for transitions
            shutdown: Cancellation token
        """


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KubernetesLeaseElector(LeaseElector):
    """Election over a coordination.k8s.io/v1 Lease."""

    def __init__(
        self,
        cluster: ClusterClient,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize lease elector.

        Args:
            cluster: Cluster client scoped to the lease namespace
            clock: Wall clock for lease timestamps
        """
        self._cluster = cluster
        self._clock = clock or utcnow

        self._handler: Optional[ElectionHandler] = None
        self._observed: Optional[LeaseRecord] = None
        self._observed_at = 0.0
        self._reported_holder: Optional[str] = None

    @property
    def observed_record(self) -> Optional[LeaseRecord]:
        """Last lease record seen."""
        return self._observed

    async def run(
        self,
        config: LeaseConfig,
        handler: ElectionHandler,
        shutdown: ShutdownSignal,
    ) -> None:
        config.validate()
        self._handler = handler

        logger.info(
            "Starting leader election",
            lease=config.name,
            namespace=config.namespace,
            identity=config.identity,
        )

        while not shutdown.cancelled:
            if not await self._acquire(config, shutdown):
                break

            logger.info(
                "Successfully acquired lease",
                lease=config.name,
                identity=config.identity,
            )

            await self._lead(config, handler, shutdown)

        logger.info("Leader election stopped", lease=config.name, identity=config.identity)

    async def _lead(
        self,
        config: LeaseConfig,
        handler: ElectionHandler,
        shutdown: ShutdownSignal,
    ) -> None:
        """Run the leader callback while renewing; clean up on exit."""
        leading = asyncio.create_task(self._run_callback(handler.on_acquired(), "on_acquired"))

        try:
            await self._renew(config, shutdown)
        finally:
            leading.cancel()
            await asyncio.gather(leading, return_exceptions=True)

            if shutdown.cancelled and config.release_on_cancel:
                await self._release(config)

            logger.info("Stopped leading", lease=config.name, identity=config.identity)

            await self._run_callback(handler.on_lost(), "on_lost")

    async def _acquire(self, config: LeaseConfig, shutdown: ShutdownSignal) -> bool:
        """
        Retry until the lease is acquired.

        Returns:
            True if acquired, False if shutdown was requested first
        """
        while not shutdown.cancelled:
            if await self._try_acquire_or_renew(config):
                return True

            if await shutdown.sleep(config.retry_period):
                break

        return False

    async def _renew(self, config: LeaseConfig, shutdown: ShutdownSignal) -> None:
        """Keep renewing until a renewal misses its deadline or shutdown."""
        loop = asyncio.get_running_loop()

        while not shutdown.cancelled:
            if await shutdown.sleep(config.retry_period):
                return

            deadline = loop.time() + config.renew_deadline

            while True:
                remaining = deadline - loop.time()
                try:
                    renewed = await asyncio.wait_for(
                        self._try_acquire_or_renew(config),
                        timeout=max(remaining, 0.001),
                    )
                except asyncio.TimeoutError:
                    renewed = False

                if renewed:
                    break

                if loop.time() + config.retry_period >= deadline:
                    logger.warning(
                        "Failed to renew lease before deadline",
                        lease=config.name,
                        identity=config.identity,
                    )
                    return

                if await shutdown.sleep(config.retry_period):
                    return

    async def _try_acquire_or_renew(self, config: LeaseConfig) -> bool:
        """
        Make one attempt to take or renew the lease.

        Args:
            config: Lease configuration

        Returns:
            True if this identity holds the lease afterwards
        """
        now = self._clock()

        try:
            current = await self._cluster.get_lease(config.name)
        except NotFoundError:
            record = LeaseRecord(
                name=config.name,
                namespace=config.namespace,
                holder_identity=config.identity,
                lease_duration_seconds=int(config.lease_duration),
                acquire_time=now,
                renew_time=now,
                lease_transitions=0,
            )
            try:
                created = await self._cluster.create_lease(record)
            except ClusterError as e:
                logger.debug("Error creating lease", lease=config.name, error=str(e))
                return False

            await self._observe(created)
            return True
        except ClusterError as e:
            logger.warning("Error retrieving lease", lease=config.name, error=str(e))
            return False

        await self._observe(current)

        holder = current.holder_identity
        if holder and holder != config.identity and not self._expired(config):
            logger.debug("Lease is held by another identity", lease=config.name, holder=holder)
            return False

        if holder == config.identity:
            acquire_time = current.acquire_time or now
            transitions = current.lease_transitions
        else:
            acquire_time = now
            transitions = current.lease_transitions + 1

        updated = replace(
            current,
            holder_identity=config.identity,
            lease_duration_seconds=int(config.lease_duration),
            acquire_time=acquire_time,
            renew_time=now,
            lease_transitions=transitions,
        )

        try:
            result = await self._cluster.update_lease(updated)
        except ClusterError as e:
            logger.debug("Error updating lease", lease=config.name, error=str(e))
            return False

        await self._observe(result)
        return True

    def _expired(self, config: LeaseConfig) -> bool:
        """Whether the observed record outlived its lease duration."""
        duration = self._observed.lease_duration_seconds if self._observed else 0
        duration = duration or config.lease_duration
        return asyncio.get_running_loop().time() > self._observed_at + duration

    async def _observe(self, record: LeaseRecord) -> None:
        """Track the latest record and report holder changes."""
        if self._observed is None or _fingerprint(record) != _fingerprint(self._observed):
            self._observed_at = asyncio.get_running_loop().time()
        self._observed = record

        holder = record.holder_identity
        if not holder or holder == self._reported_holder:
            return

        self._reported_holder = holder

        logger.info("New leader observed", lease=record.name, holder=holder)

        if self._handler is not None:
            await self._run_callback(self._handler.on_holder_changed(holder), "on_holder_changed")

    async def _release(self, config: LeaseConfig) -> None:
        """Give up the lease voluntarily."""
        if self._observed is None or self._observed.holder_identity != config.identity:
            return

        now = self._clock()
        released = replace(
            self._observed,
            holder_identity="",
            lease_duration_seconds=1,
            acquire_time=now,
            renew_time=now,
        )

        try:
            self._observed = await self._cluster.update_lease(released)
            logger.info("Released lease", lease=config.name, identity=config.identity)
        except ClusterError as e:
            logger.warning("Failed to release lease", lease=config.name, error=str(e))

    @staticmethod
    async def _run_callback(callback, name: str) -> None:
        """Await a handler callback, logging its failure."""
        try:
            await callback
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Election callback failed", callback=name, error=str(e), exc_info=True)


def _fingerprint(record: LeaseRecord) -> tuple:
    return (
        record.holder_identity,
        record.lease_duration_seconds,
        record.acquire_time,
        record.renew_time,
        record.lease_transitions,
    )
