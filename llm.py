"""HTTP client for the LLM backend.

Two endpoints are used: a non-streaming one that answers with a single JSON
document (Ollama ``{"message": {"content"}}``/``{"response"}`` or OpenAI
``{"choices": [...]}``), and a streaming one that emits NDJSON or SSE lines
consumed by :mod:`streaming`.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Callable, Mapping, Optional, Sequence
from uuid import uuid4

import requests

from env_validation import get_env_float
from streaming import TokenStreamReader

logger = logging.getLogger(__name__)

LLM_API_URL = os.getenv("LLM_API_URL", "http://localhost:11434/api/chat")
LLM_STREAM_URL = os.getenv("LLM_STREAM_URL", "http://localhost:11434/api/generate")
LLM_MODEL = os.getenv("LLM_MODEL", "kimi-k2.5:cloud")
LLM_API_KEY = os.getenv("LLM_API_KEY", "")
LLM_TIMEOUT = get_env_float("LLM_TIMEOUT", 120.0)
# None: a streamed answer may take as long as the model needs
LLM_STREAM_TIMEOUT = get_env_float("LLM_STREAM_TIMEOUT", None)

_LLM_LOGGER = logging.getLogger("cognify.llm")
if not _LLM_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _LLM_LOGGER.addHandler(_handler)
_LLM_LOGGER.setLevel(logging.INFO)
_LLM_LOGGER.propagate = False

Message = Mapping[str, str]
TokenCallback = Callable[[str], None]


class LLMError(RuntimeError):
    """Raised when the LLM backend is unreachable or answers unexpectedly."""


def messages_to_prompt(messages: Sequence[Message]) -> str:
    """Flatten chat messages into a single completion prompt."""
    blocks = []
    for message in messages:
        role = message.get("role")
        content = message.get("content", "")
        if role == "system":
            blocks.append(f"[System Instructions]\n{content}\n")
        elif role == "user":
            blocks.append(f"[User]\n{content}\n")
        else:
            blocks.append(f"[Assistant]\n{content}\n")
    return "\n".join(blocks) + "\n[Assistant]\n"


def extract_completion_text(data: Any) -> str:
    if isinstance(data, dict):
        if data.get("response"):
            return str(data["response"])
        message = data.get("message")
        if isinstance(message, dict) and message.get("content"):
            return str(message["content"])
        try:
            return str(data["choices"][0]["message"]["content"])
        except (KeyError, IndexError, TypeError):
            pass
        try:
            return str(data["choices"][0]["text"])
        except (KeyError, IndexError, TypeError):
            pass
    raise LLMError("Unexpected response format")


def _headers() -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if LLM_API_KEY:
        headers["Authorization"] = f"Bearer {LLM_API_KEY}"
    return headers


def _log_call(record: dict[str, Any]) -> None:
    try:
        _LLM_LOGGER.info(json.dumps(record, ensure_ascii=False))
    except (TypeError, ValueError):
        _LLM_LOGGER.info(record)


def llm_chat(
    messages: Sequence[Message],
    *,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    request_id: Optional[str] = None,
) -> str:
    """Send one non-streaming completion request and return its text."""
    payload: dict[str, Any] = {
        "model": LLM_MODEL,
        "messages": [dict(m) for m in messages],
        "prompt": messages_to_prompt(messages),
        "stream": False,
    }
    if temperature is not None:
        payload["temperature"] = float(temperature)
    if max_tokens is not None:
        payload["max_tokens"] = int(max_tokens)

    call_request_id = request_id or str(uuid4())
    start = time.perf_counter()
    text = ""
    status = "ok"
    try:
        try:
            r = requests.post(LLM_API_URL, json=payload, headers=_headers(), timeout=LLM_TIMEOUT)
        except requests.RequestException as e:
            raise LLMError(f"LLM request failed: {e}") from e
        if r.status_code >= 400:
            raise LLMError(f"AI API error ({r.status_code}): {r.text[:300]}")
        if "text/plain" in r.headers.get("content-type", ""):
            text = r.text
            return text
        try:
            data = r.json()
        except ValueError as e:
            raise LLMError("Unexpected response format") from e
        text = extract_completion_text(data)
        return text
    except LLMError:
        status = "error"
        raise
    finally:
        _log_call(
            {
                "event": "llm_call",
                "mode": "chat",
                "request_id": call_request_id,
                "model": LLM_MODEL,
                "status": status,
                "latency_ms": int((time.perf_counter() - start) * 1000),
                "chars_out": len(text),
            }
        )


def llm_chat_stream(
    messages: Sequence[Message],
    on_token: Optional[TokenCallback] = None,
    *,
    on_delta: Optional[TokenCallback] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    request_id: Optional[str] = None,
) -> str:
    """Stream a completion, reporting progress through the callbacks.

    If the streaming request cannot be started (network error or non-2xx
    status) a single non-streaming request is made instead and its whole
    text is delivered in one callback invocation. Failures after the first
    byte are not resumed.
    """
    payload: dict[str, Any] = {
        "model": LLM_MODEL,
        "prompt": messages_to_prompt(messages),
        "stream": True,
    }
    options: dict[str, Any] = {}
    if temperature is not None:
        options["temperature"] = float(temperature)
    if max_tokens is not None:
        options["num_predict"] = int(max_tokens)
    if options:
        payload["options"] = options

    call_request_id = request_id or str(uuid4())
    start = time.perf_counter()
    try:
        response = requests.post(
            LLM_STREAM_URL,
            json=payload,
            headers={"Content-Type": "application/json"},
            stream=True,
            timeout=LLM_STREAM_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.warning("Streaming request failed (%s), falling back to non-streaming", e)
        response = None
    if response is not None and response.status_code >= 400:
        logger.warning("Streaming failed with HTTP %s, falling back to non-streaming", response.status_code)
        response.close()
        response = None

    if response is None:
        text = llm_chat(messages, temperature=temperature, max_tokens=max_tokens, request_id=call_request_id)
        if on_delta is not None:
            on_delta(text)
        if on_token is not None:
            on_token(text)
        _log_call(
            {
                "event": "llm_call",
                "mode": "stream",
                "request_id": call_request_id,
                "model": LLM_MODEL,
                "fallback": True,
                "latency_ms": int((time.perf_counter() - start) * 1000),
                "chars_out": len(text),
            }
        )
        return text

    reader = TokenStreamReader(on_token=on_token, on_delta=on_delta)
    try:
        with response:
            for chunk in response.iter_content(chunk_size=None):
                if not chunk:
                    continue
                reader.feed(chunk)
                if reader.done:
                    break
    except requests.RequestException as e:
        raise LLMError(f"Stream interrupted: {e}") from e
    text = reader.close()
    _log_call(
        {
            "event": "llm_call",
            "mode": "stream",
            "request_id": call_request_id,
            "model": LLM_MODEL,
            "fallback": False,
            "latency_ms": int((time.perf_counter() - start) * 1000),
            "chars_out": len(text),
        }
    )
    return text
