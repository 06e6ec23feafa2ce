"""PlatformClient — remote workflow platform collaborators over HTTP."""

import json
import logging
from typing import Any

import httpx

from graphrun.services.base import ChatReply, ServiceError, TokenProvider, ToolCall

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


class PlatformClient:
    """Model service, built-in tool invoker, retrieval and auto-transform
    service backed by the platform's REST endpoints.

    Every request carries ``Authorization: Bearer <token>`` when a token
    provider is configured. The ``httpx.AsyncClient`` is created lazily
    unless one is passed in.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_provider: TokenProvider | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {await self.token_provider.get_token()}"
        return headers

    async def _post_json(self, path: str, body: dict[str, Any], what: str) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = await client.post(path, json=body, headers=await self._headers())
        except httpx.HTTPError as e:
            raise ServiceError(f"{what} request failed: {e}") from e

        if response.is_error:
            raise ServiceError(
                f"{what} failed: {_error_detail(response)}", status_code=response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(f"{what} returned invalid JSON") from e

    async def invoke_built_in(self, tool_id: str, args: dict[str, Any]) -> Any:
        path = f"/built-in-tool-node/{tool_id}/invoke"
        data = await self._post_json(path, {"args": args}, "Built-in tool")
        if data.get("error"):
            raise ServiceError(f"Built-in tool failed: {data['error']}")
        if "output" in data:
            return data["output"]
        return (data.get("data") or {}).get("output")

    async def query(
        self,
        storage_id: str,
        query: str,
        top_k: int,
        search_type: str,
        filters: dict[str, Any] | None = None,
    ) -> str:
        body = {"query": query, "top_k": top_k, "search_type": search_type, **(filters or {})}
        path = f"/ai-workflow/rag-storage-node/{storage_id}/query"
        data = await self._post_json(path, body, "RAG query")
        return (data.get("data") or {}).get("context") or data.get("context") or ""

    async def transform(
        self,
        user_request: str,
        sources: list[dict[str, Any]],
        target_node: dict[str, Any],
        target_schema: Any,
    ) -> Any:
        body = {
            "userRequest": user_request,
            "sources": sources,
            "targetNode": target_node,
            "targetInputType": target_schema,
        }
        path = "/ai-workflow/helper-node/auto-transformer"
        data = await self._post_json(path, body, "Auto-transformer")
        return (data.get("data") or {}).get("result")

    async def complete_chat(
        self, request: dict[str, Any], checkpoint_id: str | None = None
    ) -> ChatReply:
        """Stream one completion turn from ``/llm-completion``.

        The stream is read until it ends or asks for tool calls; an ``error``
        event raises ``ServiceError``.
        """
        client = self._get_client()
        body = {**request, "checkpoint_id": checkpoint_id, "stream": True}
        reply = ChatReply()
        tokens: list[str] = []
        final_seen = False

        headers = await self._headers()

        try:
            stream = client.stream("POST", "/llm-completion", json=body, headers=headers)
            async with stream as response:
                if response.is_error:
                    raise ServiceError(
                        f"Model service failed: HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    event = _parse_event(line)
                    if event is None:
                        continue
                    kind = event.get("type")
                    if kind == "token":
                        tokens.append(event.get("content") or "")
                    elif kind == "final_response":
                        final_seen = True
                        reply.message = event.get("message")
                        if event.get("parsed") is not None:
                            reply.parsed = event["parsed"]
                    elif kind == "end":
                        if not final_seen and tokens:
                            reply.message = "".join(tokens)
                    elif kind == "error":
                        detail = event.get("message") or event.get("error")
                        raise ServiceError(f"Model service error: {detail}")
                    elif kind == "tool_call_required":
                        reply.tool_calls = [
                            ToolCall(
                                name=c["name"],
                                args=c.get("args") or {},
                                call_id=c.get("tool_call_id"),
                            )
                            for c in event.get("tool_calls") or []
                        ]
                        reply.checkpoint_id = (event.get("configurable") or {}).get("checkpoint_id")
                        return reply
        except httpx.HTTPError as e:
            raise ServiceError(f"Model service request failed: {e}") from e

        if reply.message is None and tokens:
            reply.message = "".join(tokens)
        return reply

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _parse_event(line: str) -> dict[str, Any] | None:
    if not line.startswith("data: "):
        return None
    try:
        event = json.loads(line[6:])
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed stream event: %r", line[:200])
        return None
    return event if isinstance(event, dict) else None


def _error_detail(response: httpx.Response) -> str:
    fallback = response.reason_phrase or f"HTTP {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict):
        return data.get("message") or data.get("error") or fallback
    return fallback
