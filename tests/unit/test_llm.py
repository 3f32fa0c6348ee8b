from types import SimpleNamespace
from unittest.mock import AsyncMock
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError
from tenacity import wait_none

import app.services.llm
from app.core.config import settings
from app.services.llm import JSONParsingError
from app.services.llm import LLMError
from app.services.llm import extract_json
from app.services.llm import generate_text
from app.services.llm import get_client
from app.services.llm import render_prompt


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def create(monkeypatch):
    """Patch the chat completion call of the cached client."""
    mock = AsyncMock()
    client = MagicMock()
    client.chat.completions.create = mock
    monkeypatch.setattr("app.services.llm.get_client", lambda: client)
    monkeypatch.setattr(generate_text.retry, "wait", wait_none())
    return mock


@pytest.mark.asyncio
async def test_generate_text_success(create):
    create.return_value = _response("  test_content  ")

    result = await generate_text("prompt text", system_prompt="You are an analyst.")

    assert result == "test_content"
    messages = create.await_args.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "You are an analyst."}
    assert messages[1] == {"role": "user", "content": "prompt text"}
    assert create.await_args.kwargs["model"] == settings.model_id


@pytest.mark.asyncio
async def test_generate_text_api_error(create):
    create.side_effect = OpenAIError("api error")

    with pytest.raises(LLMError) as exc:
        await generate_text("prompt text")
    assert "OpenAI API error" in str(exc.value)
    assert create.await_count == 1


@pytest.mark.asyncio
async def test_generate_text_empty_content(create):
    create.return_value = _response("")

    with pytest.raises(LLMError, match="No text content"):
        await generate_text("prompt text")


@pytest.mark.asyncio
async def test_generate_text_retries_retryable_status(create):
    class ServiceUnavailable(OpenAIError):
        status_code = 503

    create.side_effect = [ServiceUnavailable("busy"), _response("ok")]

    assert await generate_text("prompt text") == "ok"
    assert create.await_count == 2


def test_missing_api_key_raises(monkeypatch):
    monkeypatch.setattr(settings, "openrouter_api_key", None)
    get_client.cache_clear()

    with pytest.raises(LLMError, match="OPENROUTER_API_KEY"):
        get_client()
    get_client.cache_clear()


def test_extract_json_plain():
    assert extract_json('{"a": 1}') == {"a": 1}


def test_extract_json_fenced():
    text = 'Here you go:\n```json\n{"overview": "text"}\n```'
    assert extract_json(text) == {"overview": "text"}


def test_extract_json_embedded():
    assert extract_json('prefix {"b":2} suffix') == {"b": 2}


def test_extract_json_no_json():
    with pytest.raises(JSONParsingError):
        extract_json("no json here")


def test_extract_json_bad_inside():
    with pytest.raises(JSONParsingError):
        extract_json('blah {"a": }')


def test_render_prompt_company_research():
    prompt = render_prompt("company_research.jinja2", company_name="Acme Corp", context="Series B closed.")

    assert "Acme Corp" in prompt
    assert "Series B closed." in prompt


def test_render_prompt_missing_template():
    with pytest.raises(LLMError, match="not found"):
        render_prompt("does_not_exist.jinja2")


def test_render_prompt_missing_variable():
    with pytest.raises(LLMError, match="could not be rendered"):
        render_prompt("company_research.jinja2")


def test_prompt_environment_formats_numbers():
    template = app.services.llm.env.from_string("{{ value | currency }} / {{ weight | percent }}")

    assert template.render(value=12_500_000, weight=0.25) == "$12.5 million / 25.0%"
