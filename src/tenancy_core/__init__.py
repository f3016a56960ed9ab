"""Tenant access control: credential resolution, quotas and isolated storage."""

__version__ = "0.1.0"
