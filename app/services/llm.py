import json
import logging
import pathlib
import re
from functools import lru_cache
from typing import Any
from uuid import uuid4

import httpx
import jinja2
from openai import AsyncOpenAI
from openai import OpenAIError
from tenacity import RetryCallState
from tenacity import retry
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from app.core.config import settings
from app.services.formatting import format_currency
from app.services.formatting import format_percent

# Configure module logger
logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when LLM call fails"""


class JSONParsingError(Exception):
    """Raised when JSON parsing fails"""


# --- Reusable Jinja2 Environment ---
PROMPT_DIR = pathlib.Path(__file__).parent / "prompt_templates"
env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(PROMPT_DIR),
    undefined=jinja2.StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)
env.filters["currency"] = format_currency
env.filters["percent"] = format_percent


def render_prompt(template_name: str, **context: Any) -> str:
    """Render a prompt template from ``prompt_templates``."""
    try:
        return env.get_template(template_name).render(**context)
    except jinja2.TemplateNotFound as e:
        logger.error("Prompt template not found: %s", template_name)
        raise LLMError(f"Prompt template not found: {template_name}") from e
    except jinja2.UndefinedError as e:
        logger.error("Prompt template %s is missing a variable: %s", template_name, e)
        raise LLMError(f"Prompt template {template_name} could not be rendered: {e}") from e


# ---------------------------------------------------------------
# OpenRouter client with required headers
# ---------------------------------------------------------------
timeout_config = httpx.Timeout(
    settings.LLM_CONNECT_TIMEOUT,
    read=settings.LLM_READ_TIMEOUT,
)


@lru_cache(maxsize=1)
def get_client() -> AsyncOpenAI:
    if not settings.openrouter_api_key:
        raise LLMError("OPENROUTER_API_KEY is not configured")
    return AsyncOpenAI(
        base_url="https://openrouter.ai/api/v1",
        api_key=settings.openrouter_api_key,
        default_headers={
            "X-Title": "valuation-report-generator",
        },
        timeout=timeout_config,
        max_retries=2,
    )


# ---------------------------------------------------------------
# Helper predicate for tenacity retry
# ---------------------------------------------------------------


def _should_retry_llm_call(retry_state: RetryCallState) -> bool:
    """Determines if a retry should occur based on the exception in RetryCallState."""
    if not retry_state.outcome:
        return False

    exc = retry_state.outcome.exception()
    if not exc:
        return False

    # Unwrap our custom LLMError to get to the original cause (e.g., OpenAIError)
    actual_exception = exc.__cause__ if isinstance(exc, LLMError) and exc.__cause__ else exc

    status = getattr(actual_exception, "status", None) or getattr(actual_exception, "status_code", None)
    if status in {429, 500, 502, 503, 504}:
        logger.debug("Retryable API error status %s detected. Retrying...", status)
        return True
    return False


@retry(
    wait=wait_exponential(multiplier=1, min=2, max=10),
    stop=stop_after_attempt(3),
    retry=_should_retry_llm_call,
    reraise=True,
)  # type: ignore
async def generate_text(
    prompt: str,
    system_prompt: str | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
) -> str:
    """Send *prompt* (with an optional system prompt) and return the generated text."""
    request_id = str(uuid4())
    logger.info("[%s] Making LLM API call with model: %s", request_id, settings.model_id)

    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})

    try:
        rsp = await get_client().chat.completions.create(
            model=settings.model_id,
            messages=messages,
            max_tokens=max_tokens or settings.llm_max_tokens,
            temperature=settings.llm_temperature if temperature is None else temperature,
        )

        if not rsp or not getattr(rsp, "choices", None):
            logger.error("[%s] Invalid response structure from LLM API: %s", request_id, str(rsp))
            raise LLMError(f"Invalid response structure from LLM API: {str(rsp)}")

        message = rsp.choices[0].message
        if message is None or not getattr(message, "content", None):
            logger.error("[%s] No content in LLM message: %s", request_id, str(message))
            raise LLMError("No text content in LLM response")

        content = message.content.strip()
        logger.debug("[%s] LLM response received, length: %d chars", request_id, len(content))
        return content
    except LLMError:
        raise
    except OpenAIError as e:
        logger.error("[%s] OpenAI API error: %s", request_id, str(e), exc_info=True)
        raise LLMError(f"OpenAI API error: {str(e)}") from e
    except Exception as e:
        logger.exception("[%s] Unexpected error in LLM call", request_id)
        raise LLMError(f"Unexpected error in LLM call: {str(e)}") from e


# ---------------------------------------------------------------
# JSON extractor helper
# ---------------------------------------------------------------
def extract_json(text: str) -> Any:
    """Attempts to robustly extract and parse JSON from LLM responses, handling markdown fences and extraneous text."""
    if isinstance(text, dict | list):
        return text

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Initial JSON parse failed, attempting extraction strategies...")

    # Strategy 1: Markdown Code Fence Extraction
    match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("Failed to parse JSON from fenced block, trying next strategy...")

    # Strategy 2: Use JSONDecoder().raw_decode for first object/array
    obj_start = text.find("{")
    arr_start = text.find("[")
    if obj_start == -1 and arr_start == -1:
        raise JSONParsingError("No JSON object or array marker found in response")
    start_pos = min(pos for pos in (obj_start, arr_start) if pos != -1)
    try:
        obj, _ = json.JSONDecoder().raw_decode(text, start_pos)
        return obj
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse JSON using raw_decode: %s", str(e))
    raise JSONParsingError("All strategies to parse JSON from LLM response failed.")
