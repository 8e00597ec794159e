#!/usr/bin/env python3
"""
Main entry point for running a lector-coordinated replica.

Usage:
    # Inside a pod (namespace and pod name from the downward API)
    POD_NAMESPACE=default POD_NAME=web-0 python -m lector.main

    # Outside the cluster, against the current kubeconfig context
    python -m lector.main --namespace default --pod-name web-0 --out-of-cluster
"""

import argparse
import asyncio
import sys
from datetime import timedelta
from typing import List, Optional

from lector.election.lease import ElectionHandler
from lector.errors import CardinalityError, ConfigurationError, LectorError
from lector.service import CoordinationService, create_service
from lector.utils.config import Config
from lector.utils.logging import configure_logging, get_logger
from lector.utils.signals import ShutdownSignal

logger = get_logger(__name__)


class LeaderService(ElectionHandler):
    """
    Example replica: joins the election and, while leading, clears the
    history of the jobs it is configured to look after.
    """

    def __init__(
        self,
        service: CoordinationService,
        config: Config,
        shutdown: ShutdownSignal,
    ):
        self.service = service
        self.shutdown = shutdown

        self.election_name = config.get("election.name", "lector")
        self.job_names: List[str] = list(config.get("jobs.names", []))
        self.retention = timedelta(seconds=float(config.get("jobs.history_retention", 3600)))
        self.cleanup_interval = float(config.get("jobs.cleanup_interval", 60))

        self.identity: Optional[str] = None
        self.app: Optional[str] = None
        self.leading = False

    async def on_acquired(self) -> None:
        self.leading = True
        logger.info("I am leader, starting work", identity=self.identity)
        await self.perform_run_action()

    async def on_holder_changed(self, identity: str) -> None:
        logger.info(
            "New leader selected",
            leader=identity,
            is_self=identity == self.identity,
        )

    async def on_lost(self) -> None:
        self.leading = False
        logger.info("I am not leader anymore", identity=self.identity)

    async def listen_election(self) -> bool:
        """
        Join the election and block until shutdown.

        Returns:
            False if the election could not be started
        """
        try:
            instance = await self.service.discovery.get_current_instance()
        except LectorError as e:
            logger.error("Cannot get active instance", error=str(e))
            return False

        self.identity = instance.name
        self.app = instance.app

        try:
            await self.service.elector.start_election(
                self.identity,
                self,
                self.election_name,
                self.shutdown,
            )
        except LectorError as e:
            logger.error("Cannot listen election", error=str(e))
            return False

        return True

    async def perform_run_action(self) -> None:
        """Leader work loop; cancelled when leadership ends."""
        while not self.shutdown.cancelled:
            await self.run_cleanup_round()

            if await self.shutdown.sleep(self.cleanup_interval):
                break

    async def run_cleanup_round(self) -> List[str]:
        """
        Clear expired jobs once.

        A round is skipped while more than one instance is labeled master.

        Returns:
            Names of deleted jobs
        """
        if self.app:
            try:
                await self.service.discovery.get_master_instance(self.app)
            except CardinalityError as e:
                logger.warning(
                    "Multiple masters observed, skipping cleanup round",
                    instances=e.names,
                )
                return []
            except LectorError as e:
                logger.error("Cannot verify master instance", error=str(e))
                return []

        deleted: List[str] = []

        for name in self.job_names:
            try:
                deleted.extend(await self.service.controller.clear_job_history(name, self.retention))
            except LectorError as e:
                logger.error("Job history cleanup failed", app=name, error=str(e))

        return deleted


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='lector - lease-based leader election for Kubernetes workloads'
    )

    parser.add_argument(
        '--namespace',
        type=str,
        help='Namespace of this pod (default: $POD_NAMESPACE)'
    )

    parser.add_argument(
        '--pod-name',
        type=str,
        help='Name of this pod (default: $POD_NAME)'
    )

    parser.add_argument(
        '--election-name',
        type=str,
        help='Election scope; the lease is named <election-name>-lock'
    )

    parser.add_argument(
        '--config',
        type=str,
        help='YAML configuration file merged over the defaults'
    )

    parser.add_argument(
        '--out-of-cluster',
        action='store_true',
        help='Use the kubeconfig instead of the pod service account'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO)'
    )

    parser.add_argument(
        '--log-format',
        type=str,
        choices=['json', 'console'],
        help='Log output format (default: json)'
    )

    return parser.parse_args(argv)


def build_config(args) -> Config:
    """Layer command-line options over file and environment configuration."""
    config = Config(args.config)

    if args.namespace:
        config.set("cluster.namespace", args.namespace)
    if args.pod_name:
        config.set("cluster.pod_name", args.pod_name)
    if args.election_name:
        config.set("election.name", args.election_name)
    if args.out_of_cluster:
        config.set("cluster.in_cluster", False)
    if args.log_level:
        config.set("logging.level", args.log_level)
    if args.log_format:
        config.set("logging.format", args.log_format)

    return config


async def run(service: CoordinationService, config: Config) -> int:
    """Run the election until a termination signal arrives."""
    shutdown = ShutdownSignal()
    shutdown.install(asyncio.get_running_loop())

    leader = LeaderService(service, config, shutdown)

    try:
        started = await leader.listen_election()
    finally:
        shutdown.uninstall()
        await service.close()

    return 0 if started else 1


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    config = build_config(args)

    configure_logging(
        log_level=config.get("logging.level", "INFO"),
        log_format=config.get("logging.format", "json"),
    )

    namespace = config.get("cluster.namespace")
    pod_name = config.get("cluster.pod_name")

    logger.info(
        "Starting lector",
        namespace=namespace,
        pod=pod_name,
        election=config.get("election.name"),
    )

    try:
        service = create_service(namespace, pod_name, config=config)
    except ConfigurationError as e:
        logger.error("Cannot start service", error=str(e))
        sys.exit(1)

    sys.exit(asyncio.run(run(service, config)))


if __name__ == '__main__':
    main()
