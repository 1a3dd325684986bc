"""Upstream model provider adapters.

Each adapter knows one upstream's request body, auth header and streaming
chunk format. The relay only talks to the ``ProviderAdapter`` interface, so
supporting another upstream means adding a subclass and registering it.
"""
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.plans import ModelClass

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are Rocode, an AI coding assistant specialized in Roblox development with Luau.
You help users write scripts, debug code, and learn Roblox game development.
Be concise, helpful, and provide working code examples when relevant.
Use Luau syntax (not Lua 5.x). Format code blocks with ```lua."""

DEFAULT_TEMPERATURE = 0.7


@dataclass
class UpstreamRequest:
    """Everything needed to issue the streaming HTTP call."""
    method: str
    url: str
    headers: Dict[str, str] = field(repr=False)
    json: Dict[str, Any]


def build_messages(history: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Prepend the system prompt to a thread's turns."""
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    return messages


def _load_json(payload: str) -> Optional[Any]:
    try:
        return json.loads(payload)
    except (TypeError, ValueError):
        return None


class ProviderAdapter(ABC):
    """Translation layer for one upstream provider."""

    name: str = ""
    credential_env: str = ""

    @abstractmethod
    def build_request(
        self,
        messages: List[Dict[str, str]],
        api_key: str,
        max_tokens: int = 2048,
    ) -> UpstreamRequest:
        """Build the provider-specific streaming request."""

    @abstractmethod
    def parse_delta(self, payload: str) -> Optional[str]:
        """Extract the text fragment from one SSE data payload, or None."""


class GeminiAdapter(ProviderAdapter):
    """Google Generative Language API (``streamGenerateContent`` over SSE)."""

    name = "gemini"
    credential_env = "GEMINI_API_KEY"

    def __init__(self, model: Optional[str] = None):
        self.model = model or os.getenv("GEMINI_MODEL", "gemini-2.0-flash-lite")

    def build_request(self, messages, api_key, max_tokens=2048):
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in messages
            if m["role"] != "system"
        ]

        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": max_tokens,
                "temperature": DEFAULT_TEMPERATURE,
            },
        }

        system = next((m for m in messages if m["role"] == "system"), None)
        if system:
            body["systemInstruction"] = {"parts": [{"text": system["content"]}]}

        return UpstreamRequest(
            method="POST",
            url=(
                "https://generativelanguage.googleapis.com/v1beta/models/"
                f"{self.model}:streamGenerateContent?alt=sse"
            ),
            headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
            json=body,
        )

    def parse_delta(self, payload):
        # data: {"candidates":[{"content":{"parts":[{"text":"..."}]}}]}
        parsed = _load_json(payload)
        try:
            text = parsed["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None
        return text if isinstance(text, str) else None


class OpenAICompatibleAdapter(ProviderAdapter):
    """Any ``/chat/completions`` endpoint that streams OpenAI-style chunks."""

    url: str = ""
    default_model: str = ""
    model_env: str = ""

    def __init__(self, model: Optional[str] = None):
        self.model = model or os.getenv(self.model_env, self.default_model)

    def extra_headers(self) -> Dict[str, str]:
        return {}

    def build_request(self, messages, api_key, max_tokens=2048):
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        headers.update(self.extra_headers())

        return UpstreamRequest(
            method="POST",
            url=self.url,
            headers=headers,
            json={
                "model": self.model,
                "messages": messages,
                "stream": True,
                "max_tokens": max_tokens,
                "temperature": DEFAULT_TEMPERATURE,
            },
        )

    def parse_delta(self, payload):
        # data: {"choices":[{"delta":{"content":"..."}}]}
        parsed = _load_json(payload)
        try:
            text = parsed["choices"][0]["delta"]["content"]
        except (KeyError, IndexError, TypeError):
            return None
        return text if isinstance(text, str) else None


class DeepSeekAdapter(OpenAICompatibleAdapter):
    name = "deepseek"
    credential_env = "DEEPSEEK_API_KEY"
    url = "https://api.deepseek.com/chat/completions"
    default_model = "deepseek-chat"
    model_env = "DEEPSEEK_MODEL"


class OpenRouterAdapter(OpenAICompatibleAdapter):
    name = "openrouter"
    credential_env = "OPENROUTER_API_KEY"
    url = "https://openrouter.ai/api/v1/chat/completions"
    default_model = "tngtech/deepseek-r1t2-chimera:free"
    model_env = "OPENROUTER_MODEL"

    def extra_headers(self):
        return {
            "HTTP-Referer": os.getenv("OPENROUTER_REFERER", "https://rocode.vercel.app"),
            "X-Title": "Rocode",
        }


ADAPTERS = {
    GeminiAdapter.name: GeminiAdapter,
    DeepSeekAdapter.name: DeepSeekAdapter,
    OpenRouterAdapter.name: OpenRouterAdapter,
}

MODEL_PROVIDERS = {
    ModelClass.BASIC: os.getenv("BASIC_PROVIDER", GeminiAdapter.name),
    ModelClass.MAX: os.getenv("MAX_PROVIDER", DeepSeekAdapter.name),
}


def get_adapter(model: ModelClass) -> ProviderAdapter:
    """Instantiate the adapter bound to a model class."""
    provider = MODEL_PROVIDERS[ModelClass(model)]
    try:
        return ADAPTERS[provider]()
    except KeyError:
        raise ValueError(f"Unknown provider '{provider}' configured for model {model}") from None
