"""Shared utilities: configuration, logging and shutdown handling."""
