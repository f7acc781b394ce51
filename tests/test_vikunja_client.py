import json

import httpx
import pytest
import pytest_asyncio

from quickadd.models import TaskPatch
from quickadd.vikunja_client import VikunjaAPIError, VikunjaClient


class Recorder:
    """MockTransport handler that replays queued responses per (method, path)."""

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method, path, *responses):
        self.routes.setdefault((method, path), []).extend(responses)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={'message': 'not found'})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def recorder():
    return Recorder()


@pytest_asyncio.fixture
async def client(recorder):
    c = VikunjaClient('http://vikunja.test/', 'tok', timeout=1, retries=1,
                      transport=httpx.MockTransport(recorder))
    yield c
    await c.aclose()


@pytest.mark.asyncio
async def test_requests_carry_bearer_token_and_api_prefix(client, recorder):
    recorder.add('GET', '/api/v1/projects', httpx.Response(200, json=[]))
    await client.get_projects()
    req = recorder.requests[0]
    assert req.headers['Authorization'] == 'Bearer tok'
    assert str(req.url) == 'http://vikunja.test/api/v1/projects'


@pytest.mark.asyncio
async def test_resolve_project_id_is_case_insensitive(client, recorder):
    recorder.add('GET', '/api/v1/projects', httpx.Response(200, json=[
        {'id': 1, 'title': ' Home '},
        {'id': 2, 'title': 'Work'},
    ]))
    assert await client.resolve_project_id(' home') == 1
    assert await client.resolve_project_id('WORK') == 2
    assert await client.resolve_project_id('Garden') is None


@pytest.mark.asyncio
async def test_resolve_labels_creates_missing_labels_once(client, recorder):
    recorder.add('GET', '/api/v1/labels', httpx.Response(200, json=[{'id': 10, 'title': 'Chores'}]))
    recorder.add('PUT', '/api/v1/labels', httpx.Response(200, json={'id': 11, 'title': 'new'}))

    ids = await client.resolve_labels(['chores', 'new', ' NEW '])

    assert ids == [10, 11, 11]
    puts = recorder.calls('PUT', '/api/v1/labels')
    assert len(puts) == 1
    assert json.loads(puts[0].content) == {'title': 'new'}


@pytest.mark.asyncio
async def test_update_task_merges_patch_over_current_task(client, recorder):
    current = {'id': 5, 'title': 'old', 'done': False, 'priority': 0, 'description': 'keep me'}
    recorder.add('GET', '/api/v1/tasks/5', httpx.Response(200, json=current))
    recorder.add('PATCH', '/api/v1/tasks/5', httpx.Response(200, json={}))

    await client.update_task(5, TaskPatch(title='New', priority=4))

    sent = json.loads(recorder.calls('PATCH', '/api/v1/tasks/5')[0].content)
    assert sent == {'id': 5, 'title': 'New', 'done': False, 'priority': 4, 'description': 'keep me'}


@pytest.mark.asyncio
async def test_set_task_labels_posts_each_label_once(client, recorder):
    recorder.add('POST', '/api/v1/tasks/5/labels', httpx.Response(201))
    await client.set_task_labels(5, [1, 1, 2])
    bodies = sorted(json.loads(r.content)['label_id'] for r in recorder.calls('POST', '/api/v1/tasks/5/labels'))
    assert bodies == [1, 2]


@pytest.mark.asyncio
async def test_retries_server_error_then_succeeds(client, recorder):
    recorder.add('GET', '/api/v1/labels',
                 httpx.Response(503, text='busy'),
                 httpx.Response(200, json=[{'id': 3, 'title': 'x'}]))
    labels = await client.get_labels()
    assert [label.id for label in labels] == [3]
    assert len(recorder.calls('GET', '/api/v1/labels')) == 2


@pytest.mark.asyncio
async def test_retries_timeout_then_succeeds(client, recorder):
    request = httpx.Request('GET', 'http://vikunja.test/api/v1/projects')
    recorder.add('GET', '/api/v1/projects',
                 httpx.ConnectTimeout('timed out', request=request),
                 httpx.Response(200, json=[{'id': 1, 'title': 'Home'}]))
    assert await client.resolve_project_id('home') == 1
    assert len(recorder.calls('GET', '/api/v1/projects')) == 2


@pytest.mark.asyncio
async def test_gives_up_after_bounded_retries(client, recorder):
    recorder.add('GET', '/api/v1/projects', httpx.Response(500, text='boom'))
    with pytest.raises(VikunjaAPIError) as excinfo:
        await client.get_projects()
    assert excinfo.value.status_code == 500
    assert excinfo.value.retryable
    # one attempt plus one retry
    assert len(recorder.calls('GET', '/api/v1/projects')) == 2


@pytest.mark.asyncio
async def test_timeout_exhaustion_propagates(client, recorder):
    request = httpx.Request('GET', 'http://vikunja.test/api/v1/projects')
    recorder.add('GET', '/api/v1/projects', httpx.ReadTimeout('slow', request=request))
    with pytest.raises(httpx.TimeoutException):
        await client.get_projects()
    assert len(recorder.calls('GET', '/api/v1/projects')) == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(client, recorder):
    recorder.add('GET', '/api/v1/tasks/9', httpx.Response(403, json={'message': 'forbidden'}))
    with pytest.raises(VikunjaAPIError) as excinfo:
        await client.get_task(9)
    assert excinfo.value.status_code == 403
    assert not excinfo.value.retryable
    assert len(recorder.calls('GET', '/api/v1/tasks/9')) == 1


@pytest.mark.asyncio
async def test_empty_body_is_returned_as_empty_dict(client, recorder):
    recorder.add('GET', '/api/v1/tasks/9', httpx.Response(204))
    assert await client.get_task(9) == {}


@pytest.mark.asyncio
async def test_zero_retries_means_single_attempt(recorder):
    recorder.add('GET', '/api/v1/labels', httpx.Response(502))
    async with VikunjaClient('http://vikunja.test', 'tok', retries=0,
                             transport=httpx.MockTransport(recorder)) as c:
        with pytest.raises(VikunjaAPIError):
            await c.get_labels()
    assert len(recorder.calls('GET', '/api/v1/labels')) == 1
