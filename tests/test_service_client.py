"""Tests for the generation service HTTP client."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
import requests

from mediaflow.errors import NodeOperationError
from mediaflow.utils.config import MediaflowConfig, ServiceConfig
from mediaflow.utils.service_client import ServiceClient, post_json


def response(status_code=200, body=None, headers=None):
    r = MagicMock()
    r.status_code = status_code
    r.ok = status_code < 400
    r.headers = headers or {}
    if body is None:
        r.json.side_effect = ValueError("no JSON")
        r.text = ""
    else:
        r.json.return_value = body
    return r


@pytest.fixture
def http():
    with patch("mediaflow.utils.service_client.requests.post") as post:
        with patch("mediaflow.utils.service_client.time.sleep") as sleep:
            yield post, sleep


class TestPostJson:
    """Tests for retry behaviour."""

    def call(self, **overrides):
        settings = {"timeout": 5.0, "max_retries_429": 2, "max_retries_5xx": 2, **overrides}
        return post_json("http://svc/api/llm", {"prompt": "hi"}, {}, ServiceConfig(**settings))

    def test_success_first_try(self, http):
        post, sleep = http
        post.return_value = response(200, {"success": True})

        assert self.call().status_code == 200
        assert post.call_count == 1
        sleep.assert_not_called()

    def test_retry_after_is_honoured(self, http):
        post, sleep = http
        post.side_effect = [response(429, headers={"retry-after": "3"}), response(200, {"success": True})]

        assert self.call().status_code == 200
        sleep.assert_called_once_with(3)

    def test_server_errors_back_off(self, http):
        post, sleep = http
        post.side_effect = [response(503), response(502), response(200, {"success": True})]

        assert self.call().status_code == 200
        assert [c.args[0] for c in sleep.call_args_list] == [2, 4]

    def test_gives_up_after_retries(self, http):
        post, _ = http
        post.return_value = response(500)

        assert self.call().status_code == 500
        assert post.call_count == 3

    def test_throttling_has_its_own_retry_budget(self, http):
        post, sleep = http
        post.return_value = response(429)

        assert self.call(max_retries_429=4, max_retries_5xx=0).status_code == 429
        assert post.call_count == 5
        assert [c.args[0] for c in sleep.call_args_list] == [2, 4, 8, 16]

    def test_client_errors_are_not_retried(self, http):
        post, sleep = http
        post.return_value = response(404)

        assert self.call().status_code == 404
        assert post.call_count == 1
        sleep.assert_not_called()

    def test_timeout_comes_from_config(self, http):
        post, _ = http
        post.return_value = response(200, {"success": True})

        self.call(timeout=12.5)

        assert post.call_args.kwargs["timeout"] == 12.5

    def test_network_errors_are_raised_after_retries(self, http):
        post, _ = http
        post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(requests.ConnectionError):
            self.call()
        assert post.call_count == 3


class TestServiceClient:
    """Tests for ServiceClient.post and call."""

    @pytest.fixture
    def client(self, config_manager):
        config = MediaflowConfig()
        config.service.service_url = "http://svc:9000/"
        config.service.max_retries_5xx = 0
        config.credentials.gemini_api_key = "gemini-key"
        config_manager.save(config)
        return ServiceClient(config_manager)

    def test_posts_to_route_with_keys(self, http, client):
        post, _ = http
        post.return_value = response(200, {"success": True, "text": "hello"})

        body = client.post("llm", {"prompt": "hi"})

        assert body["text"] == "hello"
        args, kwargs = post.call_args
        assert args[0] == "http://svc:9000/api/llm"
        assert kwargs["json"] == {"prompt": "hi"}
        assert kwargs["headers"]["x-gemini-api-key"] == "gemini-key"
        assert "x-openai-api-key" not in kwargs["headers"]

    def test_env_key_overrides_stored_key(self, http, client, monkeypatch):
        post, _ = http
        post.return_value = response(200, {"success": True})
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")

        client.post("generate", {})

        assert post.call_args.kwargs["headers"]["x-gemini-api-key"] == "env-key"

    def test_error_body_becomes_node_error(self, http, client):
        post, _ = http
        post.return_value = response(400, {"success": False, "error": "Prompt blocked"})

        with pytest.raises(NodeOperationError, match="Prompt blocked"):
            client.post("generate", {})

    def test_unsuccessful_ok_response(self, http, client):
        post, _ = http
        post.return_value = response(200, {"success": False})

        with pytest.raises(NodeOperationError, match="video request failed"):
            client.post("video", {})

    def test_status_without_body(self, http, client):
        post, _ = http
        post.return_value = response(502)

        with pytest.raises(NodeOperationError, match="HTTP 502"):
            client.post("video", {})

    def test_network_failure(self, http, client):
        post, _ = http
        post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(NodeOperationError, match="Network error"):
            client.post("llm", {})

    def test_call_runs_post_off_loop(self, http, client):
        post, _ = http
        post.return_value = response(200, {"success": True, "audio": "a.mp3"})

        body = asyncio.run(client.call("elevenlabs", {"text": "hi"}))

        assert body["audio"] == "a.mp3"
