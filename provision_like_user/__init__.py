"""Provision new directory users by copying an existing user's licenses and groups."""

__version__ = "0.1.0"
