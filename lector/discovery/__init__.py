"""Read-only discovery of instances and batch jobs."""

from lector.discovery.directory import InstanceDirectory, JobBuckets

__all__ = ["InstanceDirectory", "JobBuckets"]
