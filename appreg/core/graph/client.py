"""Low-level HTTP client for the directory service (Microsoft Graph).

Handles bearer authentication and error translation. Every call is a single
attempt; failures are raised to the caller.
"""
from __future__ import annotations
from typing import Optional, Dict, Any

import requests

from ..exceptions import GraphAPIError, NetworkFailureError

REQUEST_TIMEOUT = 30


class GraphClient:
    """HTTP client for the directory service with a pre-acquired token.

    Usage:
        client = GraphClient("https://graph.microsoft.com", token)
        response = client.post("/beta/applications", json=payload)
    """

    def __init__(self, base_url: str, token: str, timeout: int = REQUEST_TIMEOUT):
        """Initialize the client.

        Args:
            base_url: Directory service base URL
            token: Bearer token for the operator
            timeout: Per-request timeout in seconds
        """
        if not token:
            raise ValueError("A non-empty access token is required")
        self.base_url = base_url.rstrip("/")
        self._token = token
        self.timeout = timeout

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def post(self, path: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> requests.Response:
        """Execute POST request with a JSON body.

        Raises:
            GraphAPIError: On HTTP error
            NetworkFailureError: If the request could not be sent
        """
        url = f"{self.base_url}{path}"
        headers = self._headers(kwargs.pop("headers", None))
        try:
            resp = requests.post(url, json=json, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise NetworkFailureError(f"POST {url} failed: {exc}") from exc
        self._handle_error(resp, url)
        return resp

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        """Extract error.message from a Graph error body, falling back to raw text."""
        try:
            body = resp.json()
        except ValueError:
            return resp.text or resp.reason or ""
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                code = error.get("code")
                return f"{code}: {error['message']}" if code else error["message"]
        return resp.text or ""

    def _handle_error(self, resp: requests.Response, url: str) -> None:
        if resp.status_code >= 400:
            raise GraphAPIError(resp.status_code, self._error_message(resp), url)
