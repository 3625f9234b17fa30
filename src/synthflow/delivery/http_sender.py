"""HTTP sender implementing IHttpSender with requests."""

from __future__ import annotations

from typing import Mapping

import requests


class RequestsHttpSender:
    """Production IHttpSender. One pooled Session shared by all delivery threads."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    def post(self, url: str, body: bytes, headers: Mapping[str, str], timeout: float) -> int:
        resp = self._session.post(url, data=body, headers=dict(headers), timeout=timeout)
        return resp.status_code

    def close(self) -> None:
        self._session.close()
