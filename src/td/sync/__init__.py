"""Multi-client replication over the action log."""
