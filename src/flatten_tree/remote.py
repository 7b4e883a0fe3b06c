"""HTTP client for the toptal.com gitignore template API.

Two response shapes are exposed so the cache can tolerate either:

- ``list?format=json`` returns every template with its contents in one call;
- ``list`` returns the bare keys, and ``/{key}`` returns one template's text.

Transport, HTTP status and payload-shape problems all surface as `FetchError`.
"""

from __future__ import annotations

from typing import Any

import requests
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from flatten_tree.config import Template
from flatten_tree.exceptions import FetchError
from flatten_tree.logging import logger
from flatten_tree.settings import DEFAULT_API_URL

CONNECTIVITY_URL = "https://www.google.com/generate_204"


class ToptalTemplateSource:
    """Read-only template source backed by the toptal gitignore API."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = (connect_timeout, read_timeout)
        if session is None:
            retry_strategy = Retry(
                total=3,
                backoff_factor=0.5,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["GET"],
                raise_on_status=False,
            )
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def _get(self, url: str) -> requests.Response:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise FetchError(url=url, message=f"HTTP {status}") from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise FetchError(url=url, message=f"Network error: {e}") from e
        except requests.RequestException as e:
            raise FetchError(url=url, message=str(e)) from e
        return response

    def is_reachable(self) -> bool:
        """Cheap connectivity probe; never raises."""
        try:
            response = self.session.get(CONNECTIVITY_URL, timeout=(5.0, 5.0))
        except requests.RequestException as e:
            logger.info("connectivity_probe_failed", error=str(e))
            return False
        return response.ok

    def fetch_all(self) -> dict[str, Template]:
        """Fetch every template with its contents in one request.

        Raises:
            FetchError: on transport failure or when the payload is not a
                mapping of key to ``{key, name, contents}``.

        Returns:
            dict[str, Template]: templates by key
        """
        url = f"{self.base_url}/list?format=json"
        response = self._get(url)
        try:
            payload: Any = response.json()
        except ValueError as e:
            raise FetchError(url=url, message="Response is not JSON") from e
        if not isinstance(payload, dict):
            raise FetchError(url=url, message="Unexpected payload shape")

        templates: dict[str, Template] = {}
        for key, item in payload.items():
            if not isinstance(item, dict) or not isinstance(item.get("contents"), str):
                raise FetchError(url=url, message=f"Template {key!r} has no contents")
            try:
                templates[key] = Template(
                    key=key,
                    name=str(item.get("name") or key),
                    contents=item["contents"],
                )
            except ValidationError as e:
                raise FetchError(url=url, message=f"Invalid template {key!r}: {e.error_count()} error(s)") from e
        return templates

    def list_keys(self) -> list[str]:
        """Fetch the list of template keys (comma and/or newline separated)."""
        url = f"{self.base_url}/list"
        text = self._get(url).text
        keys = [k.strip() for line in text.splitlines() for k in line.split(",")]
        return [k for k in keys if k]

    def fetch_one(self, key: str) -> Template:
        """Fetch a single template's raw text."""
        url = f"{self.base_url}/{key}"
        text = self._get(url).text
        try:
            return Template(key=key, name=key, contents=text)
        except ValidationError as e:
            raise FetchError(url=url, message=f"Invalid template {key!r}") from e
