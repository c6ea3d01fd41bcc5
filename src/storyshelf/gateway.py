"""REST client for the library API.

Thin pass-through over the content, progress and seed endpoints.
Returns raw transport-shaped records (snake_case, ``created_at`` etc.);
mapping into :class:`~storyshelf.models.ContentItem` is the loader's job.
Uses urllib.request so the client has no HTTP dependency.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import urllib.request
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode

from pydantic import BaseModel

from storyshelf.models import ProgressAction

logger = logging.getLogger(__name__)


class GatewayConfig(BaseModel):
    """Connection settings for the library API."""

    url: str = ""
    timeout: float = 15.0

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Create config from environment variables."""
        return cls(
            url=os.environ.get("STORYSHELF_API_URL", ""),
            timeout=float(os.environ.get("STORYSHELF_API_TIMEOUT", "15")),
        )


class GatewayError(Exception):
    """Transport or HTTP failure talking to the library API."""

    def __init__(
        self,
        status: int = 0,
        message: str = "",
        body: str = "",
    ) -> None:
        self.status = status
        self.body = body
        super().__init__(message)


class ContentGateway:
    """Blocking JSON client for the library API."""

    def __init__(self, config: GatewayConfig | None = None) -> None:
        self._config = config or GatewayConfig.from_env()
        if not self._config.is_configured:
            raise ValueError("Library API not configured (set STORYSHELF_API_URL)")
        self._base_url = self._config.url.rstrip("/")

    def fetch_content(self, device_id: str) -> list[dict[str, object]]:
        """GET /api/content?deviceId=... -- all content joined with this device's progress."""
        data = self._request("GET", "/api/content", query={"deviceId": device_id})
        if not isinstance(data, list):
            raise GatewayError(message="Unexpected content payload: expected a list")
        return data

    def create_content(self, title: str, type: str, content: str) -> dict[str, object]:
        """POST /api/content. Returns ``{id, title, type, content, created_at}``."""
        data = self._request(
            "POST",
            "/api/content",
            body={"title": title, "type": type, "content": content},
        )
        if not isinstance(data, dict) or "id" not in data:
            raise GatewayError(message="Unexpected create response: missing id")
        return data

    def update_content(
        self,
        content_id: int | float,
        *,
        title: str | None = None,
        content: str | None = None,
    ) -> dict[str, object] | None:
        """PUT /api/content. Returns the updated record, or None if not found."""
        body: dict[str, object] = {"id": content_id}
        if title is not None:
            body["title"] = title
        if content is not None:
            body["content"] = content
        try:
            return self._request("PUT", "/api/content", body=body)
        except GatewayError as exc:
            if exc.status == 404:
                return None
            raise

    def update_progress(
        self,
        device_id: str,
        content_id: int | float,
        action: ProgressAction,
        value: dict[str, object] | None = None,
    ) -> dict[str, object]:
        """POST /api/progress with one of the :class:`ProgressAction` verbs."""
        body: dict[str, object] = {
            "deviceId": device_id,
            "contentId": content_id,
            "action": str(action),
        }
        if value is not None:
            body["value"] = value
        return self._request("POST", "/api/progress", body=body)

    def seed(
        self,
        items: list[dict[str, object]],
        device_id: str | None = None,
    ) -> dict[str, object]:
        """POST /api/seed. Returns ``{success, insertedContent, updatedProgress}``."""
        body: dict[str, object] = {"items": items}
        if device_id:
            body["deviceId"] = device_id
        data = self._request("POST", "/api/seed", body=body)
        if not isinstance(data, dict) or not data.get("success"):
            raise GatewayError(message="Seed was not acknowledged by the server")
        return data

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, object] | None = None,
        query: dict[str, str] | None = None,
    ) -> object:
        """Make a JSON request to the library API.

        Raises:
            GatewayError: On HTTP errors, connection failures or
                undecodable responses.
        """
        url = f"{self._base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"
        data = json.dumps(body).encode("utf-8") if body is not None else None

        req = urllib.request.Request(
            url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Cache-Control": "no-store",
            },
            method=method,
        )

        logger.debug("%s %s", method, url)
        try:
            with urllib.request.urlopen(req, timeout=self._config.timeout) as resp:
                resp_data = resp.read().decode("utf-8")
        except HTTPError as exc:
            resp_body = ""
            with contextlib.suppress(Exception):
                resp_body = exc.read().decode("utf-8")
            raise GatewayError(
                status=exc.code,
                message=f"Library API error: {exc.code} {exc.reason}",
                body=resp_body,
            ) from exc
        except (URLError, TimeoutError) as exc:
            reason = getattr(exc, "reason", exc)
            raise GatewayError(
                status=0,
                message=f"Library API connection error: {reason}",
            ) from exc

        if not resp_data:
            return {}
        try:
            return json.loads(resp_data)
        except json.JSONDecodeError as exc:
            raise GatewayError(
                status=0,
                message=f"Library API returned invalid JSON: {exc}",
                body=resp_data,
            ) from exc
