"""
Coordination service facade.

Wires one cluster client and namespace into the instance directory, the
lease coordinator and the job controller.
"""

from typing import Optional

from lector.cluster.client import ClusterClient, load_kube_config
from lector.discovery.directory import InstanceDirectory
from lector.election.elector import LeaseCoordinator
from lector.election.lease import LeaseElector
from lector.errors import ConfigurationError
from lector.jobs.controller import JobController
from lector.utils.config import Config, get_config
from lector.utils.logging import get_logger

logger = get_logger(__name__)


class CoordinationService:
    """
    Discovery, election and job control over one cluster connection.
    
    Attributes:
        discovery: Read-only instance and job queries
        elector: Leader election and role labels
        controller: Batch job lifecycle
    """
    
    def __init__(
        self,
        cluster: ClusterClient,
        instance_name: str,
        config: Optional[Config] = None,
        lease_elector: Optional[LeaseElector] = None,
    ):
        """
        Initialize coordination service.
        
        Args:
            cluster: Configured cluster client
            instance_name: Pod name of this process
            config: Configuration (defaults to the global configuration)
            lease_elector: Election primitive override
        
        Raises:
            ConfigurationError: If namespace or instance name is empty
        """
        if not cluster.namespace:
            raise ConfigurationError("namespace empty")
        
        if not instance_name:
            raise ConfigurationError("current pod empty")
        
        config = config or get_config()
        
        self.cluster = cluster
        self.namespace = cluster.namespace
        self.instance_name = instance_name
        
        self.discovery = InstanceDirectory(cluster, current_instance=instance_name)
        
        self.elector = LeaseCoordinator(
            cluster,
            self.discovery,
            lease_elector=lease_elector,
            lease_duration=float(config.get("election.lease_duration", 15.0)),
            renew_deadline=float(config.get("election.renew_deadline", 10.0)),
            retry_period=float(config.get("election.retry_period", 2.0)),
            release_on_cancel=bool(config.get("election.release_on_cancel", True)),
            propagate_roles=bool(config.get("election.propagate_roles", True)),
            label_retries=int(config.get("labels.retry_attempts", 5)),
            label_retry_interval=float(config.get("labels.retry_interval", 1.0)),
        )
        
        self.controller = JobController(cluster, self.discovery)
        
        logger.info(
            "CoordinationService initialized",
            namespace=self.namespace,
            instance=instance_name,
        )
    
    async def close(self) -> None:
        """Release the cluster connection."""
        await self.cluster.close()


def create_service(
    namespace: str,
    instance_name: str,
    config: Optional[Config] = None,
) -> CoordinationService:
    """
    Connect to the cluster and build a coordination service.
    
    Args:
        namespace: Namespace of this process
        instance_name: Pod name of this process
        config: Configuration (defaults to the global configuration)
    
    Returns:
        Coordination service
    
    Raises:
        ConfigurationError: If an identity input is empty or the cluster
            configuration cannot be loaded
    """
    if not namespace:
        raise ConfigurationError("namespace empty")
    
    if not instance_name:
        raise ConfigurationError("current pod empty")
    
    config = config or get_config()
    
    api_client = load_kube_config(
        in_cluster=bool(config.get("cluster.in_cluster", True)),
        kubeconfig=config.get("cluster.kubeconfig"),
        context=config.get("cluster.context"),
    )
    
    cluster = ClusterClient(
        namespace,
        api_client=api_client,
        workers=int(config.get("cluster.workers", 4)),
    )
    
    return CoordinationService(cluster, instance_name, config=config)
