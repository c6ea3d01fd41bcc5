"""Tests for the library API client."""

import json
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from storyshelf.gateway import ContentGateway, GatewayConfig, GatewayError
from storyshelf.models import ProgressAction


def _mock_response(payload) -> MagicMock:
    mock_resp = MagicMock()
    mock_resp.read.return_value = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    mock_resp.__enter__ = lambda s: s
    mock_resp.__exit__ = MagicMock(return_value=False)
    return mock_resp


def _client() -> ContentGateway:
    return ContentGateway(GatewayConfig(url="https://shelf.test/"))


class TestGatewayConfig:
    def test_defaults(self):
        cfg = GatewayConfig()
        assert cfg.url == ""
        assert cfg.timeout == 15.0
        assert cfg.is_configured is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STORYSHELF_API_URL", "https://shelf.test")
        monkeypatch.setenv("STORYSHELF_API_TIMEOUT", "3")
        cfg = GatewayConfig.from_env()
        assert cfg.url == "https://shelf.test"
        assert cfg.timeout == 3.0
        assert cfg.is_configured is True


class TestContentGateway:
    def test_raises_if_not_configured(self):
        with pytest.raises(ValueError, match="not configured"):
            ContentGateway(GatewayConfig())

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_fetch_content(self, mock_urlopen):
        rows = [
            {"id": 1, "title": "Twinkle", "type": "song", "content": "...", "read_count": 2,
             "favorite": True, "archived": False, "created_at": "2025-01-01T00:00:00Z"},
        ]
        mock_urlopen.return_value = _mock_response(rows)

        result = _client().fetch_content("device-1")

        assert result == rows
        req = mock_urlopen.call_args[0][0]
        assert req.get_method() == "GET"
        assert req.full_url == "https://shelf.test/api/content?deviceId=device-1"
        assert req.data is None

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_fetch_content_rejects_non_list(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"error": "oops"})
        with pytest.raises(GatewayError):
            _client().fetch_content("device-1")

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_create_content(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response(
            {"id": 9, "title": "A", "type": "poem", "content": "x", "created_at": "now"}
        )

        result = _client().create_content("A", "poem", "x")

        assert result["id"] == 9
        req = mock_urlopen.call_args[0][0]
        assert req.get_method() == "POST"
        assert json.loads(req.data) == {"title": "A", "type": "poem", "content": "x"}

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_update_content_sends_given_fields(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"id": 3, "title": "New"})

        _client().update_content(3, title="New")

        req = mock_urlopen.call_args[0][0]
        assert req.get_method() == "PUT"
        assert json.loads(req.data) == {"id": 3, "title": "New"}

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_update_content_not_found(self, mock_urlopen):
        mock_urlopen.side_effect = HTTPError("https://shelf.test/api/content", 404, "Not Found", {}, None)
        assert _client().update_content(3, title="New") is None

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_update_progress(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"content_id": 4, "read_count": 1})

        _client().update_progress("device-1", 4, ProgressAction.MARK_READ)

        body = json.loads(mock_urlopen.call_args[0][0].data)
        assert body == {"deviceId": "device-1", "contentId": 4, "action": "markRead"}

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_update_progress_with_value(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({})
        value = {"readCount": 5, "favorite": True, "archived": False}

        _client().update_progress("device-1", 4, ProgressAction.SET_PROGRESS, value)

        body = json.loads(mock_urlopen.call_args[0][0].data)
        assert body["action"] == "setProgress"
        assert body["value"] == value

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_seed(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response(
            {"success": True, "insertedContent": 2, "updatedProgress": 1}
        )
        items = [{"title": "A", "type": "song", "content": "x"}]

        result = _client().seed(items, device_id="device-1")

        assert result["insertedContent"] == 2
        body = json.loads(mock_urlopen.call_args[0][0].data)
        assert body == {"items": items, "deviceId": "device-1"}

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_seed_without_success_flag_raises(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"error": "items array is required"})
        with pytest.raises(GatewayError):
            _client().seed([])

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_http_error_raises(self, mock_urlopen):
        mock_urlopen.side_effect = HTTPError("https://shelf.test/api/content", 500, "Server Error", {}, None)
        with pytest.raises(GatewayError) as exc_info:
            _client().fetch_content("device-1")
        assert exc_info.value.status == 500

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_connection_error_raises(self, mock_urlopen):
        mock_urlopen.side_effect = URLError("connection refused")
        with pytest.raises(GatewayError) as exc_info:
            _client().fetch_content("device-1")
        assert exc_info.value.status == 0

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_invalid_json_raises(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response(b"<html>")
        with pytest.raises(GatewayError):
            _client().fetch_content("device-1")

    @patch("storyshelf.gateway.urllib.request.urlopen")
    def test_no_cache_header(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response([])
        _client().fetch_content("device-1")
        req = mock_urlopen.call_args[0][0]
        assert req.get_header("Cache-control") == "no-store"
