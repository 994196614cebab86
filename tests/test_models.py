"""Tests for model factory credential validation, provider routing and prompts."""

from types import SimpleNamespace

import pytest


def _settings(**overrides):
    values = {
        "programmer_model": "gpt-4o-mini",
        "planner_model": "gpt-4o-mini",
        "summarizer_model": "gpt-4o-mini",
        "openai_api_key": "openai-test-key",
        "anthropic_api_key": "anthropic-test-key",
        "ollama_base_url": "http://localhost:11434",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_openai_model_uses_openai_factory(monkeypatch):
    from warden.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(programmer_model="gpt-4o"))
    monkeypatch.setattr(models, "_make_openai", lambda *args, **kwargs: "ok-openai")
    assert models.get_llm("programmer") == "ok-openai"


def test_anthropic_model_uses_anthropic_factory(monkeypatch):
    from warden.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(planner_model="claude-sonnet-4-5"))
    monkeypatch.setattr(models, "_make_anthropic", lambda *args, **kwargs: "ok-anthropic")
    assert models.get_llm("planner") == "ok-anthropic"


def test_ollama_model_uses_ollama_factory(monkeypatch):
    from warden.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(summarizer_model="ollama:llama3.1:70b"))
    monkeypatch.setattr(models, "_make_ollama", lambda *args, **kwargs: "ok-ollama")
    assert models.get_llm("summarizer") == "ok-ollama"


def test_recovery_roles_independently_configurable(monkeypatch):
    from warden.agents import models
    settings = _settings(programmer_model="gpt-4o", planner_model="claude-opus-4", summarizer_model="ollama:qwen2.5")
    monkeypatch.setattr(models, "get_settings", lambda: settings)
    monkeypatch.setattr(models, "_make_openai", lambda *args, **kwargs: "openai")
    monkeypatch.setattr(models, "_make_anthropic", lambda *args, **kwargs: "anthropic")
    monkeypatch.setattr(models, "_make_ollama", lambda *args, **kwargs: "ollama")
    assert models.get_llm("programmer") == "openai"
    assert models.get_llm("planner") == "anthropic"
    assert models.get_llm("summarizer") == "ollama"


def test_role_temperatures(monkeypatch):
    from warden.agents import models
    seen = {}

    def fake_openai(model, api_key, temperature=0.2, max_tokens=8192):
        seen[model] = (temperature, max_tokens)
        return model

    monkeypatch.setattr(models, "get_settings", lambda: _settings(
        programmer_model="p", planner_model="pl", summarizer_model="s",
    ))
    monkeypatch.setattr(models, "_make_openai", fake_openai)
    for role in ("programmer", "planner", "summarizer"):
        models.get_llm(role)
    assert seen == {"p": (0.1, 8192), "pl": (0.2, 4096), "s": (0.0, 4096)}


def test_planner_missing_openai_key_has_clear_message(monkeypatch):
    from warden.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(openai_api_key=""))
    with pytest.raises(ValueError) as exc:
        models.get_llm("planner")
    msg = str(exc.value)
    assert "OPENAI_API_KEY" in msg
    assert "planner" in msg


def test_anthropic_model_missing_key_has_clear_message(monkeypatch):
    from warden.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(
        programmer_model="claude-sonnet-4-20250514",
        anthropic_api_key="   ",
    ))
    with pytest.raises(ValueError) as exc:
        models.get_llm("programmer")
    msg = str(exc.value)
    assert "ANTHROPIC_API_KEY" in msg
    assert "programmer" in msg


def test_ollama_does_not_require_any_api_key(monkeypatch):
    from warden.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(
        summarizer_model="ollama:llama3.1",
        openai_api_key="",
        anthropic_api_key="",
    ))
    monkeypatch.setattr(models, "_make_ollama", lambda *args, **kwargs: "ollama")
    assert models.get_llm("summarizer") == "ollama"


def test_unknown_role_rejected(monkeypatch):
    from warden.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings())
    with pytest.raises(ValueError, match="Unknown agent role"):
        models.get_llm("documenter")
    with pytest.raises(ValueError):
        models.model_name_for_role("documenter")


def test_model_name_for_role(monkeypatch):
    from warden.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(planner_model="claude-haiku"))
    assert models.model_name_for_role("planner") == "claude-haiku"


@pytest.mark.parametrize("name", [
    "smart_recovery_system",
    "smart_recovery_user",
    "diagnose_error",
    "security_scan",
    "security_recommendations",
])
def test_every_prompt_loads(name):
    from warden.agents.models import load_system_prompt
    assert load_system_prompt(name).strip()


def test_render_prompt_fills_placeholders_and_keeps_braces():
    from warden.agents.models import render_prompt
    text = render_prompt(
        "security_scan",
        changed_files="app.py",
        code_changes="+ config = {'debug': True}",
    )
    assert "{CHANGED_FILES}" not in text
    assert "{CODE_CHANGES}" not in text
    assert "+ config = {'debug': True}" in text


def test_missing_prompt_raises():
    from warden.agents.models import load_system_prompt
    with pytest.raises(FileNotFoundError):
        load_system_prompt("nope")
