"""Tests for the instance directory."""

import pytest

from conftest import make_job, utc
from lector.discovery.directory import InstanceDirectory
from lector.errors import CardinalityError, ClusterError, NotFoundError


@pytest.mark.asyncio
class TestInstanceLookup:
    """Test single-instance lookups."""
    
    async def test_get_current_instance(self, cluster, directory):
        """Test resolving the calling process's instance."""
        cluster.add_pod("web-0", labels={"app": "web"})
        
        instance = await directory.get_current_instance()
        
        assert instance.name == "web-0"
        assert instance.app == "web"
    
    async def test_current_instance_unset(self, cluster):
        """Test unset identity is reported as not found without I/O."""
        directory = InstanceDirectory(cluster, current_instance="")
        
        with pytest.raises(NotFoundError):
            await directory.get_current_instance()
        
        assert cluster.calls == []
    
    async def test_current_instance_absent(self, directory):
        """Test absent pod is reported as not found."""
        with pytest.raises(NotFoundError):
            await directory.get_current_instance()
    
    async def test_instance_info_not_found(self, directory):
        """Test not found is distinguished from other failures."""
        with pytest.raises(NotFoundError, match="web-9"):
            await directory.get_instance_info("web-9")
    
    async def test_instance_info_transport_error(self, cluster, directory):
        """Test other failures are wrapped with context."""
        cluster.errors["get_pod"] = ClusterError("connection refused", status=503)
        
        with pytest.raises(ClusterError) as exc_info:
            await directory.get_instance_info("web-0")
        
        assert not isinstance(exc_info.value, NotFoundError)
        assert "error getting instance web-0" in str(exc_info.value)
        assert exc_info.value.status == 503


@pytest.mark.asyncio
class TestInstanceQueries:
    """Test label-selector queries over instances."""
    
    async def test_get_instances(self, cluster, directory):
        """Test listing instances of an application."""
        cluster.add_pod("web-0", labels={"app": "web"})
        cluster.add_pod("web-1", labels={"app": "web"})
        cluster.add_pod("db-0", labels={"app": "db"})
        
        instances = await directory.get_instances("web")
        
        assert [i.name for i in instances] == ["web-0", "web-1"]
    
    async def test_get_instances_empty(self, directory):
        """Test empty result is not an error."""
        assert await directory.get_instances("web") == []
    
    async def test_no_master(self, cluster, directory):
        """Test zero masters yields no result and no error."""
        cluster.add_pod("web-0", labels={"app": "web", "role": "slave"})
        
        assert await directory.get_master_instance("web") is None
    
    async def test_single_master(self, cluster, directory):
        """Test the single master is returned."""
        cluster.add_pod("web-0", labels={"app": "web", "role": "slave"})
        cluster.add_pod("web-1", labels={"app": "web", "role": "master"})
        cluster.add_pod("db-0", labels={"app": "db", "role": "master"})
        
        master = await directory.get_master_instance("web")
        
        assert master.name == "web-1"
        assert cluster.calls[-1] == ("list_pods", {"role": "master", "app": "web"})
    
    async def test_double_master(self, cluster, directory):
        """Test two masters raise a cardinality error."""
        cluster.add_pod("web-0", labels={"app": "web", "role": "master"})
        cluster.add_pod("web-1", labels={"app": "web", "role": "master"})
        
        with pytest.raises(CardinalityError) as exc_info:
            await directory.get_master_instance("web")
        
        assert exc_info.value.names == ["web-0", "web-1"]
    
    async def test_master_list_not_found(self, cluster, directory):
        """Test a not-found list answer means no master."""
        cluster.errors["list_pods"] = NotFoundError("list pods: Not Found")
        
        assert await directory.get_master_instance("web") is None
    
    async def test_get_pods_by_job(self, cluster, directory):
        """Test pods are found by the job-name label."""
        cluster.add_pod("report-abc-x1", labels={"job-name": "report-abc"})
        cluster.add_pod("web-0", labels={"app": "web"})
        
        pods = await directory.get_pods_by_job("report-abc")
        
        assert [p.name for p in pods] == ["report-abc-x1"]


@pytest.mark.asyncio
class TestJobQueries:
    """Test job lookups and partitioning."""
    
    async def test_get_jobs_partitions(self, cluster, directory):
        """Test jobs land in exactly one bucket, in discovery order."""
        jobs = [
            make_job("a", succeeded=1),
            make_job("b", failed=2),
            make_job("c"),
            make_job("d", succeeded=1, failed=1),
            make_job("e", failed=1),
            make_job("f"),
        ]
        for job in jobs:
            cluster.add_job(job)
        cluster.add_job(make_job("other", app="cron", succeeded=1))
        
        buckets = await directory.get_jobs("report")
        
        assert [j.name for j in buckets.finished] == ["a", "d"]
        assert [j.name for j in buckets.failed] == ["b", "e"]
        assert [j.name for j in buckets.pending] == ["c", "f"]
        
        names = [j.name for j in buckets.finished + buckets.failed + buckets.pending]
        assert sorted(names) == sorted(j.name for j in jobs)
        assert len(buckets) == len(jobs)
    
    async def test_get_jobs_error(self, cluster, directory):
        """Test list failures are wrapped."""
        cluster.errors["list_jobs"] = ClusterError("timeout")
        
        with pytest.raises(ClusterError, match="err get jobs"):
            await directory.get_jobs("report")
    
    async def test_get_job_by_name(self, cluster, directory):
        """Test direct job lookup."""
        cluster.add_job(make_job("report-1", completion_time=utc(2026, 1, 1), succeeded=1))
        
        job = await directory.get_job_by_name("report-1")
        
        assert job.name == "report-1"
        assert job.parent == "web-0"
    
    async def test_get_job_by_name_missing(self, directory):
        """Test missing job raises not found."""
        with pytest.raises(NotFoundError):
            await directory.get_job_by_name("nope")
