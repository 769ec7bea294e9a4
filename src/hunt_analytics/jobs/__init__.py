"""Scheduled jobs. Run with ``python -m hunt_analytics.jobs.scheduler <job>``."""
