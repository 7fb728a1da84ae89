import logging

import requests

from nexticket import config
from nexticket.domain.exceptions import (
    NetworkError,
    NexTicketError,
    NotFoundError,
    error_from_payload,
)

logger = logging.getLogger(__name__)

IDENTITY_HEADER = "X-User-Email"


class BackendClient:
    """
    Thin HTTP wrapper over the NexTicket REST API.

    Every response is unwrapped from the ``{success, data|message}``
    envelope; failures come back as the same typed exception the backend
    raised. Transport failures become ``NetworkError``.

    ``session`` only needs a ``request(method, url, **kwargs)`` method
    returning a response with ``status_code`` and ``json()``.
    """

    def __init__(
        self,
        base_url: str = config.API_URL,
        session=None,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def get(self, path: str, params: dict | None = None, user_email: str | None = None, retry: bool = True):
        return self.get_envelope(path, params=params, user_email=user_email, retry=retry)["data"]

    def get_envelope(
        self,
        path: str,
        params: dict | None = None,
        user_email: str | None = None,
        retry: bool = True,
    ) -> dict:
        # Reads are idempotent: one silent retry on a transport failure.
        attempts = 2 if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                return self._send("GET", path, params=params, user_email=user_email)
            except NetworkError:
                if attempt == attempts:
                    raise
                logger.warning("GET %s failed, retrying once", path)

    def post(self, path: str, json: dict | None = None, user_email: str | None = None):
        return self._send("POST", path, json=json, user_email=user_email)["data"]

    def patch(self, path: str, json: dict | None = None, user_email: str | None = None):
        return self._send("PATCH", path, json=json, user_email=user_email)["data"]

    def delete(self, path: str, user_email: str | None = None):
        return self._send("DELETE", path, user_email=user_email)["data"]

    def _send(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
        user_email: str | None = None,
    ) -> dict:
        headers = {IDENTITY_HEADER: user_email} if user_email else {}
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        return self._decode(method, path, response)

    @staticmethod
    def _decode(method: str, path: str, response) -> dict:
        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict) or "success" not in body:
            if response.status_code == 404:
                raise NotFoundError(f"{method} {path} not found")
            raise NetworkError(
                f"{method} {path} returned an unexpected response",
                status=response.status_code,
            )

        if body["success"] and response.status_code < 400:
            return body

        error = error_from_payload(
            body.get("error"),
            body.get("message") or f"{method} {path} failed",
            body.get("details"),
        )
        if type(error) is NexTicketError:
            error.details.setdefault("status", response.status_code)
        raise error
