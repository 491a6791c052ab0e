"""Shared plumbing for the HTTP collaborator clients.

Transport failures and unexpected status codes become UpstreamError,
404 becomes NotFoundError, and bodies that fail model validation become
ResponseValidationError.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import requests
from pydantic import TypeAdapter, ValidationError

from .config import HTTP_TIMEOUT_SECONDS
from .errors import NotFoundError, ResponseValidationError, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upstream bodies are logged, never surfaced; keep the log line bounded
MAX_LOGGED_BODY_CHARS = 500


class HttpClient:
    """Base class wrapping a requests.Session with error translation."""

    service_name = "upstream"

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout

    def close(self) -> None:
        self._session.close()

    def _request(
        self,
        method: str,
        url: str,
        *,
        expected: tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> requests.Response:
        kwargs.setdefault("timeout", self._timeout)
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.error(
                "Request failed",
                extra={"service": self.service_name, "method": method, "url": url, "error": str(e)},
            )
            raise UpstreamError(f"{self.service_name}: {method} {url} failed: {e}") from e

        if response.status_code in expected:
            return response

        logger.error(
            "Unexpected response status",
            extra={
                "service": self.service_name,
                "method": method,
                "url": url,
                "status_code": response.status_code,
                "body": response.text[:MAX_LOGGED_BODY_CHARS],
            },
        )
        if response.status_code == 404:
            raise NotFoundError(f"{self.service_name}: {method} {url} returned 404")
        raise UpstreamError(
            f"{self.service_name}: {method} {url} returned {response.status_code}",
            status_code=response.status_code,
        )

    def _parse(self, response: requests.Response, model: type[T] | Any) -> T:
        """Validate a JSON body against a model or a type such as list[Model]."""
        try:
            body = response.json()
        except ValueError as e:
            raise ResponseValidationError(
                f"{self.service_name}: response is not valid JSON"
            ) from e
        # The registries answer `null` for an empty collection
        if body is None:
            body = []
        try:
            return TypeAdapter(model).validate_python(body)  # type: ignore[no-any-return]
        except ValidationError as e:
            raise ResponseValidationError(
                f"{self.service_name}: unexpected response shape: {e.error_count()} errors"
            ) from e
