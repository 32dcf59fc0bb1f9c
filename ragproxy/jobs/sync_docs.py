"""
GitHub documentation sync.

Mirrors the markdown files under one directory of a GitHub repository into
the document store. The repository path of each file is its document id:

    remote only   -> create
    both          -> update (content re-chunked and re-embedded)
    local only    -> delete

A failure on one document is logged and the run continues; failing to list
the repository aborts the run before anything is changed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import httpx

from ragproxy.config.logging import get_logger
from ragproxy.config.settings import SyncSettings
from ragproxy.rag.documents import DocumentManager
from ragproxy.rag.errors import RAGProxyError

logger = get_logger(__name__)

REQUEST_TIMEOUT_S = 30.0


class SyncError(RAGProxyError):
    """The remote repository could not be listed."""


@dataclass
class RemoteFile:
    path: str
    download_url: str


@dataclass
class SyncPlan:
    to_create: list[RemoteFile] = field(default_factory=list)
    to_update: list[RemoteFile] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)


@dataclass
class SyncReport:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class GitHubDocsSync:
    """
    Diff-and-apply sync from a GitHub directory into the document store.

    Args:
        settings: Repository coordinates, token and interval
        documents: Document manager the changes are applied through
        client: HTTP client to use; a fresh one is opened per run otherwise
    """

    def __init__(
        self,
        settings: SyncSettings,
        documents: DocumentManager,
        client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.documents = documents
        self._client = client

    @property
    def repo(self) -> str:
        return f"{self.settings.repo_owner}/{self.settings.repo_name}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"
        return headers

    async def run(self) -> SyncReport:
        """
        Run one sync.

        Raises:
            SyncError: If the repository is not configured or cannot be listed
        """
        if not self.settings.repo_owner or not self.settings.repo_name:
            raise SyncError("SYNC_REPO_OWNER and SYNC_REPO_NAME must be set")

        if self._client is not None:
            return await self._run(self._client)
        async with httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT_S), follow_redirects=True) as client:
            return await self._run(client)

    async def _run(self, client: httpx.AsyncClient) -> SyncReport:
        logger.info(f"Starting document sync from {self.repo}/{self.settings.docs_path}")

        remote = await self.list_remote_files(client)
        if not remote:
            logger.info(f"No markdown files found in {self.repo}/{self.settings.docs_path}")

        local_ids = await self.documents.list_ids()
        plan = self.plan(remote, local_ids)
        logger.info(
            f"Sync plan: {len(plan.to_create)} to create, {len(plan.to_update)} to update, "
            f"{len(plan.to_delete)} to delete"
        )

        report = SyncReport()
        if plan.is_empty:
            logger.info("Document store is already up to date")
            return report

        for remote_file in plan.to_create:
            await self._apply(report, report.created, remote_file.path, self._create(client, remote_file))
        for remote_file in plan.to_update:
            await self._apply(report, report.updated, remote_file.path, self._update(client, remote_file))
        for document_id in plan.to_delete:
            await self._apply(report, report.deleted, document_id, self.documents.delete(document_id))

        logger.info(
            f"Sync complete: {len(report.created)} created, {len(report.updated)} updated, "
            f"{len(report.deleted)} deleted, {len(report.failed)} failed"
        )
        return report

    async def _apply(self, report: SyncReport, bucket: list[str], document_id: str, operation) -> None:
        try:
            await operation
        except (RAGProxyError, httpx.HTTPError) as e:
            logger.error(f"Sync failed for {document_id!r}: {e}")
            report.failed[document_id] = str(e)
            return
        bucket.append(document_id)

    async def _create(self, client: httpx.AsyncClient, remote_file: RemoteFile) -> None:
        content = await self.fetch_content(client, remote_file)
        await self.documents.create(remote_file.path, content)

    async def _update(self, client: httpx.AsyncClient, remote_file: RemoteFile) -> None:
        content = await self.fetch_content(client, remote_file)
        await self.documents.update(remote_file.path, content)

    @staticmethod
    def plan(remote: dict[str, RemoteFile], local_ids: list[str]) -> SyncPlan:
        """Work out which documents to create, update and delete."""
        local = set(local_ids)
        plan = SyncPlan()
        for path, remote_file in remote.items():
            if path in local:
                plan.to_update.append(remote_file)
            else:
                plan.to_create.append(remote_file)
        plan.to_delete = [document_id for document_id in local_ids if document_id not in remote]
        return plan

    async def list_remote_files(self, client: httpx.AsyncClient) -> dict[str, RemoteFile]:
        """
        List markdown files under the docs path, recursing into directories.

        Raises:
            SyncError: If any directory listing fails
        """
        files: dict[str, RemoteFile] = {}
        pending = [self.settings.docs_path]
        while pending:
            directory = pending.pop(0)
            for item in await self._list_directory(client, directory):
                if item.get("type") == "dir":
                    if not item.get("path"):
                        raise SyncError(f"Directory entry {item.get('name')!r} has no path")
                    pending.append(item["path"])
                elif item.get("type") == "file" and item.get("name", "").endswith(".md"):
                    remote_file = self._remote_file(item)
                    files[remote_file.path] = remote_file
                    logger.debug(f"Found remote file: {remote_file.path}")

        logger.info(f"Found {len(files)} markdown files in {self.repo}")
        return files

    async def _list_directory(self, client: httpx.AsyncClient, directory: str) -> list[dict]:
        url = f"{self.settings.api_url.rstrip('/')}/repos/{self.repo}/contents/{directory}"
        try:
            response = await client.get(url, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to list {self.repo}/{directory}: {e}")
            raise SyncError(f"Failed to list {self.repo}/{directory}: {e}", cause=e) from e

        try:
            contents = response.json()
        except ValueError as e:
            logger.error(f"Listing of {self.repo}/{directory} is not JSON: {e}")
            raise SyncError(f"Listing of {self.repo}/{directory} is not JSON: {e}", cause=e) from e

        # The contents API returns a single object when the path is a file
        items = contents if isinstance(contents, list) else [contents]
        if not all(isinstance(item, dict) for item in items):
            raise SyncError(f"Unexpected listing format for {self.repo}/{directory}")
        return items

    def _remote_file(self, item: dict) -> RemoteFile:
        path, download_url = item.get("path"), item.get("download_url")
        if not path or not download_url:
            raise SyncError(f"Listing entry {item.get('name')!r} has no path or download_url")
        return RemoteFile(path=path, download_url=download_url)

    async def fetch_content(self, client: httpx.AsyncClient, remote_file: RemoteFile) -> str:
        response = await client.get(remote_file.download_url, headers=self._headers())
        response.raise_for_status()
        return response.text

    async def run_periodically(self, interval_seconds: float | None = None) -> None:
        """
        Sync now, then again every interval, until cancelled.

        A failed run is logged and retried at the next interval; only
        cancellation stops the loop.
        """
        interval = interval_seconds or self.settings.interval_seconds
        while True:
            try:
                await self.run()
            except (RAGProxyError, httpx.HTTPError) as e:
                logger.error(f"Document sync run failed: {e}")
            except Exception as e:
                logger.error(f"Document sync run failed unexpectedly: {e}", exc_info=True)
            logger.debug(f"Next document sync in {interval}s")
            await asyncio.sleep(interval)
