from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel
from pydantic_ai.models import Model, infer_model

from parley.log import logger

DEFAULT_CONTEXT = 8192


class ModelInfo(BaseModel):
    context: int = DEFAULT_CONTEXT
    vision_supported: bool = False
    builtin_tools_supported: bool = False


def get_model_info(model_name: str, context_window: int | None = None) -> ModelInfo:
    name = model_name.lower()
    return ModelInfo(
        context=context_window or DEFAULT_CONTEXT,
        vision_supported="llama-4" in name,
        builtin_tools_supported="gpt-oss" in name,
    )


KNOWN_MODELS: dict[str, ModelInfo] = {
    "llama-3.3-70b-versatile": get_model_info("llama-3.3-70b-versatile", 131072),
    "llama-3.1-8b-instant": get_model_info("llama-3.1-8b-instant", 131072),
    "meta-llama/llama-4-scout-17b-16e-instruct": get_model_info("meta-llama/llama-4-scout-17b-16e-instruct", 131072),
    "meta-llama/llama-4-maverick-17b-128e-instruct": get_model_info(
        "meta-llama/llama-4-maverick-17b-128e-instruct", 131072
    ),
    "openai/gpt-oss-120b": get_model_info("openai/gpt-oss-120b", 131072),
    "openai/gpt-oss-20b": get_model_info("openai/gpt-oss-20b", 131072),
    "moonshotai/kimi-k2-instruct": get_model_info("moonshotai/kimi-k2-instruct", 131072),
}


def lookup_model_info(model_name: str, model_infos: dict[str, ModelInfo] | None = None) -> ModelInfo:
    model_infos = model_infos if model_infos is not None else KNOWN_MODELS
    return model_infos.get(model_name) or get_model_info(model_name)


async def fetch_model_infos(base_url: str, api_key: str, timeout: float = 10) -> dict[str, ModelInfo]:
    """List the models the API currently serves.

    Args:
        base_url: The OpenAI compatible API base URL.
        api_key: The API key.
        timeout: Request timeout in seconds.

    Returns:
        Model infos keyed by model id.
    """
    url = f"{base_url.rstrip('/')}/models"
    logger.info(f"Making GET request to: {url}")
    async with httpx.AsyncClient(headers={"Authorization": f"Bearer {api_key}"}, timeout=timeout) as client:
        response = await client.get(url)
        response.raise_for_status()
        data = response.json()

    model_infos = {
        item["id"]: get_model_info(item["id"], item.get("context_window"))
        for item in data.get("data", [])
        if item.get("id")
    }
    logger.info(f"Retrieved {len(model_infos)} models")
    return model_infos


def init_model(
    provider: str,
    model_name: str,
    api_key: str | None = None,
    base_url: str | None = None,
    **model_kwargs: Any,
) -> Model:
    if provider == "groq":
        from pydantic_ai.models.groq import GroqModel
        from pydantic_ai.providers.groq import GroqProvider

        return GroqModel(model_name, provider=GroqProvider(api_key=api_key), **model_kwargs)
    if provider == "openai":
        from pydantic_ai.models.openai import OpenAIModel
        from pydantic_ai.providers.openai import OpenAIProvider

        return OpenAIModel(model_name, provider=OpenAIProvider(base_url=base_url, api_key=api_key), **model_kwargs)
    return infer_model(f"{provider}:{model_name}")
