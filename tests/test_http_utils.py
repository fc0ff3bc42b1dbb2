import http.client
import os
import sys
import unittest
import urllib.error


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))


from polis_sync.http_utils import HttpClient, HttpResponse, with_query_params  # noqa: E402


class ScriptedClient(HttpClient):
    """按顺序抛出 / 返回预设结果，不做真实网络请求，也不真的 sleep。"""

    def __init__(self, outcomes: list, **kwargs) -> None:  # noqa: ANN003
        super().__init__(**kwargs)
        self.outcomes = list(outcomes)
        self.calls = 0
        self.sleeps: list[int] = []

    def _fetch(self, url, headers):  # noqa: ANN001, ANN202
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def _sleep_before_retry(self, attempt: int) -> None:
        self.sleeps.append(attempt)


OK = HttpResponse(status=200, url="u", headers={}, body=b"{}")


class TestHttpUtils(unittest.TestCase):
    def test_with_query_params_merges(self) -> None:
        base = "https://example.com/api?x=1"
        url = with_query_params(base, {"x": "2", "y": "3"})
        self.assertIn("x=2", url)
        self.assertIn("y=3", url)

    def test_with_query_params_drops_empty_values(self) -> None:
        url = with_query_params("https://ds.test/ds-stream", {"since": "5", "actor": None, "type": ""})
        self.assertEqual(url, "https://ds.test/ds-stream?since=5")

    def test_response_json_and_text(self) -> None:
        resp = HttpResponse(status=200, url="u", headers={}, body=b'{"a": 1}')
        self.assertEqual(resp.json(), {"a": 1})
        self.assertEqual(resp.text(), '{"a": 1}')

    def test_truncated_read_is_retried_then_succeeds(self) -> None:
        client = ScriptedClient([http.client.IncompleteRead(b"{", 10), OK], max_retries=2)
        self.assertIs(client.get("https://ds.test/ds-stream"), OK)
        self.assertEqual(client.calls, 2)
        self.assertEqual(client.sleeps, [0])

    def test_zero_retries_raises_first_error(self) -> None:
        client = ScriptedClient([http.client.IncompleteRead(b"{", 10), OK], max_retries=0)
        with self.assertRaises(http.client.HTTPException):
            client.get("https://bob.test/c.md")
        self.assertEqual(client.calls, 1)
        self.assertEqual(client.sleeps, [])

    def test_only_retryable_statuses_are_retried(self) -> None:
        not_found = urllib.error.HTTPError("u", 404, "missing", {}, None)
        client = ScriptedClient([not_found], max_retries=3)
        with self.assertRaises(urllib.error.HTTPError):
            client.get("u")
        self.assertEqual(client.calls, 1)

        busy = urllib.error.HTTPError("u", 503, "busy", {}, None)
        client = ScriptedClient([busy, busy, OK], max_retries=3)
        self.assertIs(client.get("u"), OK)
        self.assertEqual(client.sleeps, [0, 1])
