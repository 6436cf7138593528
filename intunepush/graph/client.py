# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Thin Microsoft Graph client for the Intune app registry.

GraphClient wraps a requests.Session and a token provider. It is safe to
share between concurrent pipelines because the bearer token is passed as an
explicit per-request header and never stored in ``session.headers``.

Error Mapping:

- Transport failures (connection reset, timeout) -> NetworkError (transient)
- Non-2xx responses -> RegistryRequestError(status, body) (permanent)
- Non-JSON success bodies -> ProtocolError

Example:
    ```python
    from intunepush.auth import CredentialManager
    from intunepush.graph import GraphClient

    client = GraphClient(CredentialManager())
    app = client.get("/deviceAppManagement/mobileApps/1234")
    ```
"""

from __future__ import annotations

import threading
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from intunepush import __version__
from intunepush.auth import TokenProvider
from intunepush.cancellation import check_cancelled
from intunepush.exceptions import NetworkError, ProtocolError, RegistryRequestError
from intunepush.logging import Logger, get_global_logger

DEFAULT_GRAPH_BASE_URL = "https://graph.microsoft.com/beta"
USER_AGENT = f"intunepush/{__version__}"


def make_session() -> requests.Session:
    """
    Create a requests.Session with sane retry/backoff defaults for Graph.

    - Retries throttling and gateway errors on idempotent GETs only; creates
      and commits are never replayed by the transport.
    - Honors Retry-After on 429/503.
    - Sets a User-Agent. Authorization is never a session header.
    """
    s = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=(429, 502, 503, 504),
        allowed_methods=("GET",),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    s.headers.update({"User-Agent": USER_AGENT})
    s.mount("https://", HTTPAdapter(max_retries=retries))
    s.mount("http://", HTTPAdapter(max_retries=retries))
    return s


class GraphClient:
    """Authenticated JSON client for the Graph beta endpoint.

    Attributes:
        base_url: Graph root URL without trailing slash.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        base_url: str = DEFAULT_GRAPH_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = 60.0,
        logger: Logger | None = None,
    ) -> None:
        self._tokens = token_provider
        self.base_url = base_url.rstrip("/")
        self._session = session if session is not None else make_session()
        self.timeout = timeout
        self._logger = logger

    @property
    def logger(self) -> Logger:
        return self._logger if self._logger is not None else get_global_logger()

    def url(self, path: str) -> str:
        if path.startswith("https://") or path.startswith("http://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        action: str = "call Graph",
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Send one authenticated request and decode the JSON response.

        Args:
            method: HTTP method.
            path: Path below base_url, or an absolute URL.
            json: Optional JSON body.
            action: Human description used in error messages
                (e.g., "create content version").
            cancel: Optional cancellation event, checked before sending.

        Returns:
            The decoded JSON object, or {} for an empty body (e.g., 204).

        Raises:
            UploadCancelledError: If cancel is set.
            NetworkError: On transport failures.
            RegistryRequestError: On non-2xx responses.
            ProtocolError: If a success body is not a JSON object.
        """
        check_cancelled(cancel, action)
        url = self.url(path)
        headers = {
            "Authorization": f"Bearer {self._tokens.get_token()}",
            "Accept": "application/json",
        }
        self.logger.debug("HTTP", f"{method} {url}")

        try:
            response = self._session.request(
                method, url, json=json, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as err:
            raise NetworkError(f"Failed to {action}: {err}") from err

        self.logger.debug("HTTP", f"Response: {response.status_code} {response.reason}")
        if not response.ok:
            raise RegistryRequestError(
                f"Failed to {action}", response.status_code, response.text
            )

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as err:
            raise ProtocolError(f"Failed to {action}: response is not JSON") from err
        if not isinstance(data, dict):
            raise ProtocolError(f"Failed to {action}: expected a JSON object")
        return data

    def get(self, path: str, **kwargs: Any) -> dict[str, Any]:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, body: dict[str, Any] | None = None, **kwargs: Any) -> dict[str, Any]:
        return self.request("POST", path, json=body if body is not None else {}, **kwargs)

    def patch(self, path: str, body: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        return self.request("PATCH", path, json=body, **kwargs)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> GraphClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
