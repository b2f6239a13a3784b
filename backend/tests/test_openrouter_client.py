import asyncio
import json

import httpx
import pytest

from amicooked.clients.openrouter import AICallError, OpenRouterClient
from amicooked.config import Settings


def _completion(content: str) -> dict:
    return {'choices': [{'message': {'role': 'assistant', 'content': content}}]}


@pytest.mark.asyncio
async def test_complete_posts_chat_payload(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen['headers'] = request.headers
        seen['body'] = json.loads(request.content)
        return httpx.Response(200, json=_completion('You are medium rare.'))

    client = OpenRouterClient(settings, transport=httpx.MockTransport(handler))
    reply = await client.complete('Analyze me', 'You are a career coach.', model='meta-llama/llama-4-scout')

    assert reply == 'You are medium rare.'
    assert seen['headers']['authorization'] == 'Bearer test-key'
    assert seen['headers']['x-title'] == 'amicooked'
    assert seen['body']['model'] == 'meta-llama/llama-4-scout'
    assert seen['body']['messages'] == [
        {'role': 'system', 'content': 'You are a career coach.'},
        {'role': 'user', 'content': 'Analyze me'},
    ]


@pytest.mark.asyncio
async def test_default_model_is_used_without_override(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen['body'] = json.loads(request.content)
        return httpx.Response(200, json=_completion('ok'))

    client = OpenRouterClient(settings, transport=httpx.MockTransport(handler))
    await client.complete('hi')

    assert seen['body']['model'] == settings.default_model
    assert seen['body']['messages'] == [{'role': 'user', 'content': 'hi'}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    'response, status_code',
    [
        (httpx.Response(429, json={'error': 'rate limited'}), 429),
        (httpx.Response(200, json={'choices': []}), None),
        (httpx.Response(200, json=_completion('   ')), None),
        (httpx.Response(200, text='<html>bad gateway</html>'), None),
    ],
)
async def test_unusable_responses_raise_ai_call_error(settings, response, status_code):
    client = OpenRouterClient(settings, transport=httpx.MockTransport(lambda request: response))

    with pytest.raises(AICallError) as excinfo:
        await client.complete('hi')

    assert excinfo.value.status_code == status_code


@pytest.mark.asyncio
async def test_slow_completion_times_out(tmp_path):
    settings = Settings(
        OPENROUTER_API_KEY='test-key',
        STORE_DB_PATH=str(tmp_path / 'unused.db'),
        AI_TIMEOUT_SECONDS=0.05,
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json=_completion('too late'))

    client = OpenRouterClient(settings, transport=httpx.MockTransport(handler))

    with pytest.raises(AICallError, match='timed out'):
        await client.complete('hi')


@pytest.mark.asyncio
async def test_streaming_forwards_chunks(settings):
    events = [
        {'choices': [{'delta': {'content': 'You are '}}]},
        {'choices': [{'delta': {}}]},
        {'choices': [{'delta': {'content': 'toasted.'}}]},
    ]
    body = ''.join(f'data: {json.dumps(event)}\n\n' for event in events) + ': keep-alive\n\ndata: [DONE]\n\n'
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen['body'] = json.loads(request.content)
        return httpx.Response(200, content=body.encode('utf-8'), headers={'content-type': 'text/event-stream'})

    chunks = []

    async def on_chunk(chunk: str) -> None:
        chunks.append(chunk)

    client = OpenRouterClient(settings, transport=httpx.MockTransport(handler))
    reply = await client.complete('hi', on_chunk=on_chunk)

    assert seen['body']['stream'] is True
    assert chunks == ['You are ', 'toasted.']
    assert reply == 'You are toasted.'


@pytest.mark.asyncio
async def test_streaming_error_status_raises(settings):
    client = OpenRouterClient(
        settings, transport=httpx.MockTransport(lambda request: httpx.Response(502, text='upstream'))
    )

    with pytest.raises(AICallError) as excinfo:
        await client.complete('hi', on_chunk=lambda chunk: None)

    assert excinfo.value.status_code == 502
