"""Async client for the parts of the Vikunja REST API the enrichment flow uses.

All requests go to ``{base_url}/api/v1`` with a bearer token. Timeouts,
network errors and 5xx responses are retried a bounded number of times with
the same request; 4xx responses are raised straight away.
"""
import asyncio
import logging
from typing import Any, Iterable, List, Optional

import httpx

from . import config
from .models import Label, Project, TaskPatch

logger = logging.getLogger(__name__)


class VikunjaAPIError(Exception):
    """Non-2xx response from the Vikunja API."""

    def __init__(self, status_code: int, body: str = '', url: str = ''):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f'Vikunja API error {status_code} for {url}: {body[:200]}')

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class VikunjaClient:
    """Client for a single Vikunja instance.

    Example:
        async with VikunjaClient('https://todo.example.com', token) as client:
            project_id = await client.resolve_project_id('Home')
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = config.HTTP_TIMEOUT_SECONDS if timeout is None else timeout
        self.retries = config.HTTP_RETRIES if retries is None else max(0, retries)
        self._http = httpx.AsyncClient(
            base_url=f'{self.base_url}/api/v1',
            headers={
                'Authorization': f'Bearer {token}',
                'Content-Type': 'application/json',
            },
            timeout=self.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> 'VikunjaClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._http.request(method, path, json=json)
            except httpx.TransportError as exc:
                # TimeoutException is a TransportError too
                if attempt > self.retries:
                    raise
                logger.warning('retrying Vikunja request %s %s after %s (attempt %d)',
                               method, path, type(exc).__name__, attempt)
                continue

            if response.is_error:
                err = VikunjaAPIError(response.status_code, response.text, str(response.request.url))
                if err.retryable and attempt <= self.retries:
                    logger.warning('retrying Vikunja request %s %s after status %d (attempt %d)',
                                   method, path, response.status_code, attempt)
                    continue
                raise err

            # some endpoints answer with an empty body
            if 'application/json' in response.headers.get('content-type', ''):
                return response.json()
            return {}

    async def get_projects(self) -> List[Project]:
        data = await self._request('GET', '/projects')
        return [Project.model_validate(p) for p in data or []]

    async def get_labels(self) -> List[Label]:
        data = await self._request('GET', '/labels')
        return [Label.model_validate(label) for label in data or []]

    async def create_label(self, title: str) -> Label:
        data = await self._request('PUT', '/labels', json={'title': title})
        return Label.model_validate(data)

    async def get_task(self, task_id: int) -> dict:
        return await self._request('GET', f'/tasks/{task_id}')

    async def update_task(self, task_id: int, patch: TaskPatch) -> dict:
        """Apply patch on top of the task's current state.

        Vikunja resets fields that are missing from an update body, so the
        full task is fetched first and the patch merged over it.
        """
        current = await self.get_task(task_id)
        merged = {**current, **patch.as_update()}
        return await self._request('PATCH', f'/tasks/{task_id}', json=merged)

    async def add_label_to_task(self, task_id: int, label_id: int) -> None:
        await self._request('POST', f'/tasks/{task_id}/labels', json={'label_id': label_id})

    async def set_task_labels(self, task_id: int, label_ids: Iterable[int]) -> None:
        unique_ids = list(dict.fromkeys(label_ids))
        await asyncio.gather(*(self.add_label_to_task(task_id, label_id) for label_id in unique_ids))

    async def resolve_labels(self, names: Iterable[str]) -> List[int]:
        """Map label names to IDs, creating the labels that don't exist yet.

        Matching is case-insensitive on the trimmed title; each missing label
        is created once even if it is named several times.
        """
        existing = await self.get_labels()
        by_key = {label.title.strip().lower(): label.id for label in existing}

        ids: List[int] = []
        for name in names:
            key = name.strip().lower()
            if key not in by_key:
                created = await self.create_label(name.strip())
                logger.info('created Vikunja label %r (id=%d)', created.title, created.id)
                by_key[key] = created.id
            ids.append(by_key[key])
        return ids

    async def resolve_project_id(self, name: str) -> Optional[int]:
        """Return the ID of the project titled name (case-insensitive), or None."""
        needle = name.strip().lower()
        for project in await self.get_projects():
            if project.title.strip().lower() == needle:
                return project.id
        return None
