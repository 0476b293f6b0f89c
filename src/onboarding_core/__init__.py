"""Durable task-execution core for business-onboarding agents."""

__version__ = "0.1.0"
