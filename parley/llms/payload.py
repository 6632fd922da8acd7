"""Request payload helpers shared by the chat clients."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from parley.log import logger
from parley.messages import (
    ApprovalRequest,
    ApprovalResponse,
    ConversationItem,
    ImageContent,
    Message,
    TextContent,
)
from parley.tools import ToolSpec

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant capable of using tools. "
    "Use tools only when necessary and relevant to the user's request. "
    "Format responses using Markdown."
)

_SAFE_PROPERTY_FIELDS = ("type", "description", "enum", "minimum", "maximum")


def build_system_prompt(custom_prompt: str = "", now: datetime | None = None) -> str:
    now = now or datetime.now().astimezone()
    prompt = f"{DEFAULT_SYSTEM_PROMPT}\n\nCurrent date and time: {now.strftime('%A, %B %d, %Y %H:%M:%S %Z').strip()}"
    if custom_prompt and custom_prompt.strip():
        prompt += f"\n\n{custom_prompt.strip()}"
    return prompt


def sanitize_schema(schema: dict[str, Any] | None) -> dict[str, Any]:
    """Rebuild a tool input schema from the fields providers reliably accept."""
    safe_schema: dict[str, Any] = {"type": "object", "properties": {}}
    if not schema:
        return safe_schema

    properties = schema.get("properties")
    if isinstance(properties, dict):
        for key, value in properties.items():
            if isinstance(value, dict):
                safe_schema["properties"][key] = {
                    field: value[field] for field in _SAFE_PROPERTY_FIELDS if value.get(field) is not None
                }

    required = schema.get("required")
    if isinstance(required, list) and required:
        safe_schema["required"] = list(required)
    return safe_schema


def prepare_tools(tools: Sequence[ToolSpec], responses_api: bool = False) -> list[dict[str, Any]]:
    prepared = []
    for tool in tools:
        if not tool.name:
            logger.warning(f"Tool missing name: {tool}")
        parameters = sanitize_schema(tool.input_schema)
        if responses_api:
            prepared.append({
                "type": "function",
                "name": tool.name or "unknown_tool",
                "description": tool.description,
                "parameters": parameters,
            })
        else:
            prepared.append({
                "type": "function",
                "function": {
                    "name": tool.name or "unknown_tool",
                    "description": tool.description,
                    "parameters": parameters,
                },
            })
    return prepared


def _responses_content(message: Message) -> str | list[dict[str, Any]]:
    if isinstance(message.content, str) or not message.has_images():
        return message.text()
    parts: list[dict[str, Any]] = []
    for part in message.content:
        if isinstance(part, TextContent):
            parts.append({"type": "input_text", "text": part.text})
        elif isinstance(part, ImageContent):
            parts.append({"type": "input_image", "image_url": part.image_url.url})
    return parts


def build_responses_input(items: Sequence[ConversationItem]) -> tuple[str | None, list[dict[str, Any]]]:
    """Convert conversation history into Responses API ``instructions`` and ``input``.

    Tool messages are folded into the item of the call they answer. Approval
    requests and responses are passed through in the order given.
    """
    instructions = None
    input_items: list[dict[str, Any]] = []
    tool_outputs = {
        item.tool_call_id: item.text()
        for item in items
        if isinstance(item, Message) and item.role == "tool" and item.tool_call_id
    }

    for item in items:
        if isinstance(item, (ApprovalRequest, ApprovalResponse)):
            input_items.append(item.model_dump(exclude_none=True))
            continue

        if item.role == "system":
            instructions = item.text()
            continue

        if item.role == "tool":
            continue

        if item.role == "assistant" and item.tool_calls:
            if item.text():
                input_items.append({"role": "assistant", "content": item.text()})
            for tool_call in item.tool_calls:
                output = tool_outputs.get(tool_call.id)
                if tool_call.server_label:
                    mcp_item = {
                        "type": "mcp_call",
                        "id": tool_call.id,
                        "name": tool_call.name,
                        "arguments": tool_call.function.arguments,
                        "server_label": tool_call.server_label,
                    }
                    if output:
                        mcp_item["status"] = "completed"
                        mcp_item["output"] = output
                    input_items.append(mcp_item)
                else:
                    input_items.append({
                        "type": "function_call",
                        "call_id": tool_call.id,
                        "name": tool_call.name,
                        "arguments": tool_call.function.arguments,
                    })
                    if output:
                        input_items.append({
                            "type": "function_call_output",
                            "call_id": tool_call.id,
                            "output": output,
                        })
            continue

        input_items.append({"role": item.role, "content": _responses_content(item)})

    return instructions, input_items
