"""Background jobs."""

from ragproxy.jobs.sync_docs import GitHubDocsSync, SyncReport

__all__ = ["GitHubDocsSync", "SyncReport"]
