"""Batch job lifecycle owned by the elected leader."""

from lector.jobs.controller import JobController, render_args
from lector.jobs.watch import JobWatch

__all__ = ["JobController", "JobWatch", "render_args"]
