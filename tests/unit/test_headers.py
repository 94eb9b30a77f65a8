"""Unit tests for header utilities."""

from idempotent_execution.utils.headers import (
    KEY_HEADER,
    REPLAY_HEADER,
    strip_volatile_headers,
    with_replay_headers,
)


class TestStripVolatileHeaders:
    def test_removes_volatile_headers(self):
        headers = {
            "Content-Type": "application/json",
            "Date": "Mon, 01 Jan 2024 00:00:00 GMT",
            "Server": "uvicorn",
            "Transfer-Encoding": "chunked",
        }

        assert strip_volatile_headers(headers) == {"Content-Type": "application/json"}

    def test_keeps_application_headers(self):
        headers = {"Set-Cookie": "session=abc", "ETag": '"v1"', "Content-Length": "2"}
        assert strip_volatile_headers(headers) == headers

    def test_extra_names_case_insensitive(self):
        headers = {"X-Request-Id": "r1", "X-Id": "1"}
        assert strip_volatile_headers(headers, extra=["x-request-id"]) == {"X-Id": "1"}

    def test_does_not_mutate_input(self):
        headers = {"Date": "now"}
        strip_volatile_headers(headers)
        assert headers == {"Date": "now"}


class TestWithReplayHeaders:
    def test_adds_replay_and_key(self):
        result = with_replay_headers({"Content-Type": "application/json"}, "abc-123")

        assert result == {
            "Content-Type": "application/json",
            REPLAY_HEADER: "true",
            KEY_HEADER: "abc-123",
        }

    def test_first_execution_marked_false(self):
        assert with_replay_headers({}, "k", is_replay=False)[REPLAY_HEADER] == "false"

    def test_replaces_existing_headers_case_insensitively(self):
        headers = {"idempotent-replay": "false", "idempotency-key": "old"}

        result = with_replay_headers(headers, "new")

        assert result == {REPLAY_HEADER: "true", KEY_HEADER: "new"}

    def test_returns_copy(self):
        headers = {"X-Id": "1"}
        with_replay_headers(headers, "k")
        assert headers == {"X-Id": "1"}
