import json
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import llm


class _FakeResponse:
    def __init__(self, status_code, payload=None, chunks=(), content_type="application/json"):
        self.status_code = status_code
        self._payload = payload
        self._chunks = list(chunks)
        self.text = json.dumps(payload) if payload is not None else ""
        self.headers = {"content-type": content_type}
        self.closed = False

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def iter_content(self, chunk_size=None):
        yield from self._chunks

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "Hello"},
]


class StreamFallbackTests(unittest.TestCase):
    def test_stream_error_status_falls_back_to_single_chat_call(self):
        calls = []

        def _fake_post(url, json=None, headers=None, timeout=None, stream=False):
            calls.append({"url": url, "json": json, "stream": stream})
            if stream:
                return _FakeResponse(500, {"error": "boom"})
            return _FakeResponse(200, {"message": {"content": "Full answer"}})

        tokens, deltas = [], []
        with patch("llm.requests.post", side_effect=_fake_post):
            text = llm.llm_chat_stream(MESSAGES, tokens.append, on_delta=deltas.append)

        self.assertEqual(text, "Full answer")
        self.assertEqual(tokens, ["Full answer"])
        self.assertEqual(deltas, ["Full answer"])
        self.assertEqual(len(calls), 2)
        self.assertEqual(calls[0]["url"], llm.LLM_STREAM_URL)
        self.assertTrue(calls[0]["json"]["stream"])
        self.assertEqual(calls[1]["url"], llm.LLM_API_URL)
        self.assertFalse(calls[1]["json"]["stream"])

    def test_connection_error_falls_back_once(self):
        calls = []

        def _fake_post(url, json=None, headers=None, timeout=None, stream=False):
            calls.append(url)
            if stream:
                raise requests.ConnectionError("refused")
            return _FakeResponse(200, {"response": "from fallback"})

        with patch("llm.requests.post", side_effect=_fake_post):
            text = llm.llm_chat_stream(MESSAGES)

        self.assertEqual(text, "from fallback")
        self.assertEqual(calls, [llm.LLM_STREAM_URL, llm.LLM_API_URL])

    def test_fallback_failure_raises_llm_error_without_retry(self):
        calls = []

        def _fake_post(url, json=None, headers=None, timeout=None, stream=False):
            calls.append(url)
            return _FakeResponse(503, {"error": "down"})

        with patch("llm.requests.post", side_effect=_fake_post):
            with self.assertRaises(llm.LLMError):
                llm.llm_chat_stream(MESSAGES)
        self.assertEqual(len(calls), 2)

    def test_successful_stream_is_accumulated(self):
        body = b'{"response": "Hel"}\n{"response": "lo"}\n{"done": true}\n'
        response = _FakeResponse(200, chunks=[body[:10], body[10:]])

        with patch("llm.requests.post", return_value=response) as post:
            tokens = []
            text = llm.llm_chat_stream(MESSAGES, tokens.append, temperature=0.2, max_tokens=50)

        self.assertEqual(text, "Hello")
        self.assertEqual(tokens, ["Hel", "Hello"])
        self.assertTrue(response.closed)
        payload = post.call_args.kwargs["json"]
        self.assertEqual(payload["options"], {"temperature": 0.2, "num_predict": 50})
        self.assertTrue(payload["prompt"].endswith("[Assistant]\n"))
        self.assertIn("[System Instructions]\nBe brief.", payload["prompt"])


class ChatCallTests(unittest.TestCase):
    def test_plain_text_body_is_returned_as_is(self):
        response = _FakeResponse(200, content_type="text/plain; charset=utf-8")
        response.text = "just text"
        with patch("llm.requests.post", return_value=response):
            self.assertEqual(llm.llm_chat(MESSAGES), "just text")

    def test_openai_shape_is_understood(self):
        response = _FakeResponse(200, {"choices": [{"message": {"content": "Answer"}}]})
        with patch("llm.requests.post", return_value=response):
            self.assertEqual(llm.llm_chat(MESSAGES), "Answer")

    def test_unknown_shape_raises(self):
        response = _FakeResponse(200, {"unexpected": True})
        with patch("llm.requests.post", return_value=response):
            with self.assertRaises(llm.LLMError) as ctx:
                llm.llm_chat(MESSAGES)
        self.assertIn("Unexpected response format", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
