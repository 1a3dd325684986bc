"""Tests for the upstream provider adapters."""
import pytest

from services.plans import ModelClass
from services.providers import (
    SYSTEM_PROMPT,
    DeepSeekAdapter,
    GeminiAdapter,
    OpenRouterAdapter,
    build_messages,
    get_adapter,
)

HISTORY = [
    {"role": "user", "content": "make a part"},
    {"role": "assistant", "content": "Instance.new(\"Part\")"},
    {"role": "user", "content": "now color it"},
]


def test_build_messages_prepends_system_prompt():
    messages = build_messages(HISTORY)

    assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert messages[1:] == HISTORY


def test_gemini_request_shape():
    request = GeminiAdapter(model="gemini-test").build_request(build_messages(HISTORY), "secret", 512)

    assert request.method == "POST"
    assert request.url.endswith("/models/gemini-test:streamGenerateContent?alt=sse")
    assert request.headers["x-goog-api-key"] == "secret"
    assert "secret" not in request.url
    assert "secret" not in repr(request)
    assert request.json["systemInstruction"] == {"parts": [{"text": SYSTEM_PROMPT}]}
    assert [c["role"] for c in request.json["contents"]] == ["user", "model", "user"]
    assert request.json["generationConfig"]["maxOutputTokens"] == 512


def test_openai_compatible_request_shape():
    request = DeepSeekAdapter(model="deepseek-chat").build_request(build_messages(HISTORY), "secret", 256)

    assert request.url == "https://api.deepseek.com/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.json["stream"] is True
    assert request.json["model"] == "deepseek-chat"
    assert request.json["max_tokens"] == 256
    assert request.json["messages"][0]["role"] == "system"
    assert len(request.json["messages"]) == 4


def test_openrouter_sends_attribution_headers():
    request = OpenRouterAdapter().build_request(build_messages(HISTORY), "secret")

    assert request.headers["X-Title"] == "Rocode"
    assert "HTTP-Referer" in request.headers
    assert request.headers["Authorization"] == "Bearer secret"


@pytest.mark.parametrize("payload", [
    "{not json",
    "[]",
    "null",
    '{"candidates": []}',
    '{"candidates": [{"content": {"parts": []}}]}',
    '{"candidates": [{"content": {"parts": [{"text": 5}]}}]}',
])
def test_gemini_parse_delta_tolerates_bad_payloads(payload):
    assert GeminiAdapter().parse_delta(payload) is None


def test_gemini_parse_delta():
    payload = '{"candidates": [{"content": {"parts": [{"text": "local x = 1"}]}}]}'
    assert GeminiAdapter().parse_delta(payload) == "local x = 1"


@pytest.mark.parametrize("payload", [
    "{not json",
    '{"choices": []}',
    '{"choices": [{"delta": {}}]}',
    '{"choices": [{"delta": {"content": null}}]}',
])
def test_openai_parse_delta_tolerates_bad_payloads(payload):
    assert DeepSeekAdapter().parse_delta(payload) is None


def test_openai_parse_delta():
    payload = '{"choices": [{"index": 0, "delta": {"content": "print"}}]}'
    assert DeepSeekAdapter().parse_delta(payload) == "print"


def test_get_adapter_follows_model_binding():
    assert isinstance(get_adapter(ModelClass.BASIC), GeminiAdapter)
    assert isinstance(get_adapter(ModelClass.MAX), DeepSeekAdapter)


def test_get_adapter_rejects_unknown_provider(monkeypatch):
    from services import providers

    monkeypatch.setitem(providers.MODEL_PROVIDERS, ModelClass.MAX, "nowhere")

    with pytest.raises(ValueError):
        get_adapter(ModelClass.MAX)
