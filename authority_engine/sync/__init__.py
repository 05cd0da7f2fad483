"""Synchronization of permission trees with the remote store."""
