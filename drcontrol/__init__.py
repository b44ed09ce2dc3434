"""Disaster-recovery handlers for backups, failover, health checks and data validation."""

__version__ = "0.1.0"
__all__ = ["backup", "failover", "health", "validator"]