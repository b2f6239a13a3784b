from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


class AICallError(Exception):
    """Network failure, timeout or unusable reply from the completion API."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OpenRouterClient:
    """Thin wrapper around the OpenRouter chat completions endpoint."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._settings = settings
        self._url = settings.openrouter_base_url
        self._headers = {
            'Authorization': f'Bearer {settings.openrouter_api_key}',
            'Content-Type': 'application/json',
            'HTTP-Referer': settings.openrouter_referer,
            'X-Title': settings.openrouter_app_title,
        }
        self._timeout = settings.ai_timeout_seconds
        self._transport = transport

    @property
    def default_model(self) -> str:
        return self._settings.default_model

    async def complete(
        self,
        prompt: str,
        system_prompt: str = '',
        model: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> str:
        """Return the generated text. The whole call, streaming included, is bounded by the AI timeout."""
        model = model or self.default_model
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({'role': 'system', 'content': system_prompt})
        messages.append({'role': 'user', 'content': prompt})
        payload: Dict[str, Any] = {'model': model, 'messages': messages}

        try:
            return await asyncio.wait_for(self._send(payload, on_chunk), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning('OpenRouter call to %s timed out after %ss', model, self._timeout)
            raise AICallError(f'AI call timed out after {self._timeout}s') from exc

    async def _send(self, payload: Dict[str, Any], on_chunk: Optional[ChunkCallback]) -> str:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            if on_chunk is None:
                return await self._post(client, payload)
            return await self._stream(client, {**payload, 'stream': True}, on_chunk)

    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> str:
        try:
            response = await client.post(self._url, json=payload, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AICallError(
                f'OpenRouter API error: {exc.response.status_code}', status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise AICallError(f'OpenRouter request failed: {exc}') from exc

        try:
            content = response.json()['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise AICallError('OpenRouter returned an unexpected payload') from exc
        if not isinstance(content, str) or not content.strip():
            raise AICallError('OpenRouter returned an empty completion')
        return content

    async def _stream(self, client: httpx.AsyncClient, payload: Dict[str, Any], on_chunk: ChunkCallback) -> str:
        parts: List[str] = []
        try:
            async with client.stream('POST', self._url, json=payload, headers=self._headers) as response:
                if response.status_code >= 400:
                    raise AICallError(
                        f'OpenRouter API error: {response.status_code}', status_code=response.status_code
                    )
                async for line in response.aiter_lines():
                    if not line.startswith('data:'):
                        continue
                    data = line[len('data:'):].strip()
                    if data == '[DONE]':
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        continue
                    choices = chunk.get('choices') or [{}]
                    delta = (choices[0].get('delta') or {}).get('content')
                    if not delta:
                        continue
                    parts.append(delta)
                    result = on_chunk(delta)
                    if inspect.isawaitable(result):
                        await result
        except httpx.HTTPError as exc:
            raise AICallError(f'OpenRouter stream failed: {exc}') from exc

        content = ''.join(parts)
        if not content.strip():
            raise AICallError('OpenRouter returned an empty completion')
        return content
