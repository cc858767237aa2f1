"""Webhook sink: POSTs each record as JSON (dependency-free, urllib)."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..fingerprint import DeletionRecord
from .base import Sink


class WebhookSink(Sink):
    """
    Settings:
        url: Endpoint (required)
        token: Optional bearer token
        timeout_s: Request timeout in seconds (default 10)
        verify_on_init: Probe the endpoint during initialize (default true)
    """

    type_name = "webhook"

    def __init__(self, settings: dict[str, Any] | None = None):
        super().__init__(settings)
        self.url = str(self.settings.get("url") or "")
        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"Webhook url must be http(s): {self.url!r}")
        self.token = self.settings.get("token")
        self.timeout_s = float(self.settings.get("timeout_s", 10.0))
        self.verify_on_init = bool(self.settings.get("verify_on_init", True))

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _post(self, payload: dict[str, Any]) -> int:
        req = Request(
            self.url,
            data=json.dumps(payload, default=str).encode("utf-8"),
            method="POST",
            headers=self._headers(),
        )
        try:
            with urlopen(req, timeout=self.timeout_s) as resp:
                return int(resp.status)
        except HTTPError as e:
            raise RuntimeError(f"Webhook HTTP error {e.code} from {self.url}") from e
        except URLError as e:
            raise RuntimeError(f"Webhook unreachable {self.url}: {e.reason}") from e

    def initialize(self) -> None:
        if self.verify_on_init:
            self._post({"event": "init", "source": "unsend"})

    def deliver(self, record: DeletionRecord) -> None:
        self._post({"event": "deletion", "record": record.to_dict()})
