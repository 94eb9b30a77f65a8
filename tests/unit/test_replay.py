"""Unit tests for storing and replaying HTTP responses."""

import base64

import pytest
from pydantic import ValidationError

from idempotent_execution.core.replay import HttpResponse, replay_response, to_stored_response
from idempotent_execution.models import StoredResponse


@pytest.fixture
def response() -> HttpResponse:
    return HttpResponse(
        status=201,
        headers={"content-type": "application/json", "date": "Mon", "x-id": "1"},
        body=b'{"id": "pay_1"}',
    )


class TestToStoredResponse:
    def test_encodes_body_and_filters_headers(self, response):
        stored = to_stored_response(response)

        assert stored.status == 201
        assert stored.headers == {"content-type": "application/json", "x-id": "1"}
        assert base64.b64decode(stored.body_b64) == b'{"id": "pay_1"}'

    def test_empty_body(self):
        stored = to_stored_response(HttpResponse(204, {}, b""))
        assert stored.body_b64 == ""

    def test_json_form_is_serializable(self, response):
        data = to_stored_response(response).model_dump(mode="json")
        assert isinstance(data["body_b64"], str)


class TestReplayResponse:
    def test_from_model(self, response):
        replayed = replay_response(to_stored_response(response), "k1")

        assert replayed.status == 201
        assert replayed.body == b'{"id": "pay_1"}'
        assert replayed.headers["Idempotent-Replay"] == "true"
        assert replayed.headers["Idempotency-Key"] == "k1"

    def test_from_json_form(self, response):
        data = to_stored_response(response).model_dump(mode="json")

        replayed = replay_response(data, "k1")

        assert replayed.body == b'{"id": "pay_1"}'
        assert replayed.headers["x-id"] == "1"

    def test_first_execution(self, response):
        replayed = replay_response(to_stored_response(response), "k1", is_replay=False)
        assert replayed.headers["Idempotent-Replay"] == "false"

    def test_without_key_adds_no_headers(self, response):
        replayed = replay_response(to_stored_response(response), None)

        assert "Idempotent-Replay" not in replayed.headers
        assert "Idempotency-Key" not in replayed.headers

    def test_invalid_stored_data(self):
        with pytest.raises(ValidationError):
            replay_response({"status": 200, "body_b64": "%%%"}, "k1")

    def test_does_not_mutate_stored(self, response):
        stored = to_stored_response(response)
        replay_response(stored, "k1")
        assert "Idempotent-Replay" not in stored.headers


def test_stored_response_validated_on_replay():
    stored = StoredResponse(status=200, headers={}, body_b64=base64.b64encode(b"ok").decode())
    assert replay_response(stored, "k").body == b"ok"
