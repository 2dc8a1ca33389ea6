"""envforge — resumable provisioning and teardown for a developer environment."""

__version__ = "0.1.0"
