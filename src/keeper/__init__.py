"""Keeper: schedule reconciliation for restic backup profiles."""

__version__ = "0.1.0"
