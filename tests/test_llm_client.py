from types import SimpleNamespace

import pytest

import core.llm as llm


def test_api_key_resolution_by_prefix(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
    monkeypatch.setenv("GEMINI_API_KEY", "g-key")
    assert llm.get_api_key_for_model("openai/gpt-4o") == "sk-openai"
    assert llm.get_api_key_for_model("gemini/gemini-2.0-flash") == "g-key"
    assert llm.get_api_key_for_model("") is None


def test_provider_config_for_openai_compatible_hosts():
    cfg = llm.resolve_provider_config("xai/grok-4", api_key="k")
    assert cfg == {
        "model": "grok-4",
        "base_url": "https://api.x.ai/v1",
        "api_key": "k",
        "custom_llm_provider": "openai",
    }
    gemini = llm.resolve_provider_config("gemini/gemini-2.0-flash", api_key="k")
    assert gemini["model"] == "gemini-2.0-flash"
    assert gemini["custom_llm_provider"] == "gemini"


@pytest.mark.asyncio
async def test_ask_sends_system_and_user_messages(monkeypatch):
    calls = []

    async def fake_acompletion(**kwargs):
        calls.append(kwargs)
        message = SimpleNamespace(content="  hello back  ")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    monkeypatch.setattr(llm, "acompletion", fake_acompletion)
    client = llm.AIClient("openai/gpt-4o-mini", api_key="k")

    answer = await client.ask("hi", system="be brief")

    assert answer == "hello back"
    assert calls[0]["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]
    assert calls[0]["api_key"] == "k"
    assert client.configured
