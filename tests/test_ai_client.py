import io
import json
import unittest
import urllib.error
from unittest.mock import MagicMock, patch

from eprocurement.errors import TransientIntegrationError
from eprocurement.infrastructure.ai_client import ChatCompletionClient
from eprocurement.observability import _METRICS, reset_metrics_for_tests


def _response(body: dict) -> MagicMock:
    response = MagicMock()
    response.read.return_value = json.dumps(body).encode("utf-8")
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


class ChatCompletionClientTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.client = ChatCompletionClient(
            base_url="https://ia.example.test/v1/",
            api_key="secreto",
            model="modelo-prueba",
            retry_attempts=2,
            retry_backoff_ms=0,
        )

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_enabled_requires_key_and_url(self) -> None:
        self.assertTrue(self.client.enabled)
        self.assertFalse(ChatCompletionClient(base_url="https://x", api_key=" ", model="m").enabled)
        self.assertFalse(ChatCompletionClient(base_url="", api_key="k", model="m").enabled)
        self.assertFalse(ChatCompletionClient(base_url="https://x", api_key="k", model="m", enabled=False).enabled)

    def test_from_config_reads_ai_settings(self) -> None:
        client = ChatCompletionClient.from_config(
            {"AI_BASE_URL": "https://ia.example.test", "AI_API_KEY": "k", "AI_MODEL": "m", "AI_MAX_TOKENS": 10}
        )
        self.assertEqual(client.model, "m")
        self.assertEqual(client.max_tokens, 10)
        self.assertTrue(client.enabled)

    def test_complete_posts_chat_payload(self) -> None:
        body = {"choices": [{"message": {"content": "hola"}}]}
        with patch("urllib.request.urlopen", return_value=_response(body)) as urlopen:
            content = self.client.complete([{"role": "user", "content": "x"}], operation="analyze_proposals")

        self.assertEqual(content, "hola")
        sent = urlopen.call_args.args[0]
        self.assertEqual(sent.full_url, "https://ia.example.test/v1/chat/completions")
        self.assertEqual(sent.get_header("Authorization"), "Bearer secreto")
        payload = json.loads(sent.data.decode("utf-8"))
        self.assertEqual(payload["model"], "modelo-prueba")
        self.assertEqual(payload["max_tokens"], 2000)
        self.assertEqual(
            _METRICS.prometheus_snapshot()["ai_request_total"], {("analyze_proposals", "ok"): 1}
        )

    def test_server_errors_are_retried(self) -> None:
        failure = urllib.error.HTTPError("https://ia", 503, "unavailable", {}, io.BytesIO(b"busy"))
        body = {"choices": [{"message": {"content": "ok"}}]}
        with patch("urllib.request.urlopen", side_effect=[failure, _response(body)]) as urlopen:
            self.assertEqual(self.client.complete([]), "ok")
        self.assertEqual(urlopen.call_count, 2)

    def test_client_errors_become_transient_integration_errors(self) -> None:
        failure = urllib.error.HTTPError("https://ia", 401, "unauthorized", {}, io.BytesIO(b"bad key"))
        with patch("urllib.request.urlopen", side_effect=failure) as urlopen:
            with self.assertRaises(TransientIntegrationError) as ctx:
                self.client.complete([], operation="validate_brief")
        self.assertEqual(urlopen.call_count, 1)
        self.assertEqual(ctx.exception.code, "ai_unavailable")
        self.assertEqual(ctx.exception.http_status, 502)
        self.assertEqual(
            _METRICS.prometheus_snapshot()["ai_request_total"], {("validate_brief", "error"): 1}
        )

    def test_missing_choices_is_an_error(self) -> None:
        with patch("urllib.request.urlopen", return_value=_response({"choices": []})):
            with self.assertRaises(TransientIntegrationError):
                self.client.complete([])


if __name__ == "__main__":
    unittest.main()
