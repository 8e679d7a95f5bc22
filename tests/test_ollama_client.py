import asyncio
import json
import unittest

import httpx

from services.commands.ollama_client import (
    LLMBadResponseError,
    LLMModelNotFoundError,
    LLMUnavailableError,
    OllamaChatClient,
    parse_chat_message,
)


def _client(handler):
    return OllamaChatClient(
        base_url="http://ollama.test",
        model="llama3.2:latest",
        timeout_s=1.0,
        transport=httpx.MockTransport(handler),
    )


class OllamaClientTests(unittest.TestCase):
    def test_posts_chat_body_and_parses_tool_calls(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {"function": {"name": "query_net_worth", "arguments": {}}},
                        {"function": {"name": "sell_partial", "arguments": "{\"symbol\": \"ETH\", \"percent\": 50}"}},
                    ],
                },
            })

        msg = asyncio.run(_client(handler).chat([{"role": "user", "content": "hi"}], [{"type": "function"}]))
        self.assertEqual(seen["url"], "http://ollama.test/api/chat")
        self.assertEqual(seen["body"]["model"], "llama3.2:latest")
        self.assertFalse(seen["body"]["stream"])
        self.assertEqual([c.name for c in msg.tool_calls], ["query_net_worth", "sell_partial"])
        self.assertEqual(msg.tool_calls[1].arguments, {"symbol": "ETH", "percent": 50})

    def test_overrides_url_and_model(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["model"] = json.loads(request.content)["model"]
            return httpx.Response(200, json={"message": {"content": "ok"}})

        msg = asyncio.run(_client(handler).chat([], [], base_url="http://other:1/", model="qwen2.5"))
        self.assertEqual(seen, {"url": "http://other:1/api/chat", "model": "qwen2.5"})
        self.assertEqual(msg.content, "ok")

    def test_unreachable_maps_to_503(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(LLMUnavailableError) as ctx:
            asyncio.run(_client(handler).chat([], []))
        self.assertEqual(ctx.exception.status_code, 503)

    def test_missing_model_maps_to_404(self):
        with self.assertRaises(LLMModelNotFoundError) as ctx:
            asyncio.run(_client(lambda r: httpx.Response(404, json={"error": "model not found"})).chat([], []))
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertIn("ollama pull llama3.2:latest", str(ctx.exception))

    def test_bad_payload_maps_to_502(self):
        with self.assertRaises(LLMBadResponseError) as ctx:
            asyncio.run(_client(lambda r: httpx.Response(200, text="not json")).chat([], []))
        self.assertEqual(ctx.exception.status_code, 502)
        with self.assertRaises(LLMBadResponseError):
            parse_chat_message({"done": True})

    def test_unparseable_arguments_become_empty(self):
        msg = parse_chat_message({"message": {"tool_calls": [{"function": {"name": "navigate", "arguments": "{oops"}}]}})
        self.assertEqual(msg.tool_calls[0].arguments, {})
        self.assertEqual(msg.to_history()["tool_calls"][0]["function"]["name"], "navigate")

    def test_logs_leave_out_payloads(self):
        raw = '{"account": "Revolut", "amount": 5000'
        with self.assertLogs("services.commands.ollama_client", level="WARNING") as logs:
            parse_chat_message({"message": {"tool_calls": [{"function": {"name": "add_cash", "arguments": raw}}]}})
            with self.assertRaises(Exception):
                asyncio.run(_client(lambda r: httpx.Response(500, text="Revolut 5000 EUR")).chat([], []))
        joined = "\n".join(logs.output)
        self.assertNotIn("Revolut", joined)
        self.assertNotIn("5000", joined)
        self.assertIn(f"raw_len={len(raw)}", joined)


if __name__ == "__main__":
    unittest.main()
