"""Streaming client for the OpenAI compatible Responses API."""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
from httpx_sse import aconnect_sse

from parley.llms import ChatClient, ChatStream
from parley.llms.events import (
    ApprovalRequested,
    ContentDelta,
    ReasoningDelta,
    StreamComplete,
    StreamError,
    StreamEvent,
    StreamStart,
    ToolCallsSnapshot,
)
from parley.llms.models import ModelInfo, lookup_model_info
from parley.llms.payload import build_responses_input, build_system_prompt, prepare_tools
from parley.log import logger
from parley.messages import (
    ApprovalRequest,
    ConversationItem,
    Message,
    PreResolvedResponse,
    ToolCall,
    ToolCallFunction,
    Usage,
)
from parley.settings import ChatSettings
from parley.tools import ToolExecutor

_TOOL_ITEM_TYPES = ("function_call", "mcp_call")


class ResponsesAccumulator:
    """
    Folds Responses API stream events into the assistant response.

    ``handle`` returns the stream events to surface for one decoded SSE
    payload. After the stream ends, ``error`` is set if the API reported a
    failure, otherwise ``complete`` builds the final event.
    """

    def __init__(self) -> None:
        self.content = ""
        self.reasoning = ""
        self.error: str | None = None
        self.usage: Usage | None = None
        self._tool_items: dict[str, dict[str, Any]] = {}
        self.approval_requests: list[ApprovalRequest] = []

    def tool_calls(self) -> list[ToolCall]:
        return [
            ToolCall(
                id=item["call_id"],
                function=ToolCallFunction(name=item["name"], arguments=item["arguments"]),
                server_label=item["server_label"],
            )
            for item in self._tool_items.values()
        ]

    def pre_resolved_responses(self) -> list[PreResolvedResponse]:
        return [
            PreResolvedResponse(tool_call_id=item["call_id"], content=item["output"])
            for item in self._tool_items.values()
            if item["output"] is not None
        ]

    def handle(self, data: dict[str, Any]) -> list[StreamEvent]:
        event_type = data.get("type")

        if event_type == "error":
            self.error = _error_message(data.get("error") or data.get("message"))
            return []
        if event_type == "response.failed":
            self.error = _error_message((data.get("response") or {}).get("error"))
            return []

        if event_type == "response.output_text.delta":
            delta = data.get("delta") or ""
            if not delta:
                return []
            self.content += delta
            return [ContentDelta(content=delta)]

        if event_type == "response.reasoning_text.delta":
            delta = data.get("delta") or ""
            if not delta:
                return []
            self.reasoning += delta
            return [ReasoningDelta(reasoning=delta, accumulated=self.reasoning)]

        if event_type in ("response.function_call_arguments.delta", "response.mcp_call_arguments.delta"):
            item = self._tool_items.get(data.get("item_id", ""))
            if item is None:
                return []
            item["arguments"] += data.get("delta") or ""
            return [ToolCallsSnapshot(tool_calls=self.tool_calls())]

        if event_type == "response.output_item.added":
            item = data.get("item") or {}
            if item.get("type") in _TOOL_ITEM_TYPES:
                self._track_tool_item(item)
                return [ToolCallsSnapshot(tool_calls=self.tool_calls())]
            return []

        if event_type == "response.output_item.done":
            return self._finish_item(data.get("item") or {})

        if event_type == "response.completed":
            usage = (data.get("response") or {}).get("usage") or {}
            self.usage = Usage(
                prompt_tokens=usage.get("input_tokens", 0),
                completion_tokens=usage.get("output_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            )
        return []

    def _track_tool_item(self, item: dict[str, Any]) -> dict[str, Any]:
        tracked = self._tool_items.setdefault(
            item["id"],
            {
                "call_id": item.get("call_id") or item["id"],
                "name": item.get("name", ""),
                "arguments": "",
                "server_label": item.get("server_label") if item.get("type") == "mcp_call" else None,
                "output": None,
            },
        )
        return tracked

    def _finish_item(self, item: dict[str, Any]) -> list[StreamEvent]:
        item_type = item.get("type")
        if item_type == "mcp_approval_request":
            request = ApprovalRequest(
                id=item["id"],
                name=item.get("name", ""),
                server_label=item.get("server_label", ""),
                arguments=item.get("arguments") or "",
            )
            self.approval_requests.append(request)
            return [ApprovalRequested(approval_request=request)]

        if item_type not in _TOOL_ITEM_TYPES:
            return []

        tracked = self._track_tool_item(item)
        if item.get("name"):
            tracked["name"] = item["name"]
        if item.get("arguments") is not None:
            tracked["arguments"] = item["arguments"]
        if item.get("output") is not None:
            tracked["output"] = item["output"]
        elif item.get("error"):
            tracked["output"] = json.dumps({"error": _error_message(item["error"])})
        return [ToolCallsSnapshot(tool_calls=self.tool_calls())]

    def finish_reason(self) -> str:
        if self.approval_requests:
            return "mcp_approval_required"
        if any(item["output"] is None for item in self._tool_items.values()):
            return "tool_calls"
        return "stop"

    def complete(self) -> StreamComplete:
        return StreamComplete(
            content=self.content,
            tool_calls=self.tool_calls() or None,
            reasoning=self.reasoning or None,
            usage=self.usage,
            finish_reason=self.finish_reason(),
            pre_resolved_responses=self.pre_resolved_responses() or None,
            approval_requests=list(self.approval_requests) or None,
        )


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error) if error else "Unknown error"


class ResponsesChatClient(ChatClient):
    """Streams ``POST <base_url>/responses`` over server-sent events."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        tool_executor: ToolExecutor | None = None,
        settings: ChatSettings | None = None,
        timeout: float = 300,
        model_infos: dict[str, ModelInfo] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.tool_executor = tool_executor
        self.settings = settings or ChatSettings()
        self.model_infos = model_infos
        self.headers = {"Authorization": f"Bearer {api_key}", "Groq-Beta": "inference-metrics"}
        self.client = httpx.AsyncClient(headers=self.headers, timeout=timeout)

    def build_payload(self, items: Sequence[ConversationItem], model: str) -> dict[str, Any]:
        instructions, input_items = build_responses_input(items)
        tools = [server.to_tool() for server in self.settings.remote_mcp_servers]
        if self.tool_executor is not None:
            tools.extend(prepare_tools(self.tool_executor.list_tools(), responses_api=True))

        payload: dict[str, Any] = {
            "model": model,
            "input": input_items,
            "instructions": instructions or build_system_prompt(self.settings.custom_system_prompt),
            "stream": True,
            "store": False,
            "temperature": self.settings.temperature,
            "top_p": self.settings.top_p,
        }
        if tools:
            payload["tools"] = tools
        if self.settings.reasoning_effort:
            payload["reasoning"] = {"effort": self.settings.reasoning_effort}
        return payload

    def stream(self, items: Sequence[ConversationItem], model: str) -> ChatStream:
        return ChatStream(lambda: self._events(list(items), model))

    async def _events(self, items: list[ConversationItem], model: str) -> AsyncIterator[StreamEvent]:
        has_images = any(isinstance(item, Message) and item.role == "user" and item.has_images() for item in items)
        if has_images and not lookup_model_info(model, self.model_infos).vision_supported:
            yield StreamError(
                error=f"The selected model ({model}) does not support image inputs. "
                "Please select a vision-capable model."
            )
            return

        url = f"{self.base_url}/responses"
        accumulator = ResponsesAccumulator()
        try:
            payload = self.build_payload(items, model)
            logger.info(f"Making POST request to: {url} with model: {model}")
            async with aconnect_sse(self.client, "POST", url, json=payload) as event_source:
                response = event_source.response
                if response.status_code >= 400:
                    await response.aread()
                    raise httpx.HTTPStatusError(
                        f"API Error {response.status_code}: {response.text}",
                        request=response.request,
                        response=response,
                    )

                yield StreamStart(stream_id=uuid.uuid4().hex)
                async for sse in event_source.aiter_sse():
                    if not sse.data or sse.data.strip() == "[DONE]":
                        continue
                    try:
                        data = json.loads(sse.data)
                    except json.JSONDecodeError:
                        logger.error(f"Failed to parse stream event: {sse.data[:200]}")
                        continue
                    for event in accumulator.handle(data):
                        yield event
        except Exception as e:
            logger.exception(f"Error streaming response: {e}")
            yield StreamError(error=str(e))
            return

        if accumulator.error is not None:
            logger.error(f"Responses API reported an error: {accumulator.error}")
            yield StreamError(error=accumulator.error)
            return
        yield accumulator.complete()

    async def close(self) -> None:
        logger.info("Closing responses client")
        await self.client.aclose()
