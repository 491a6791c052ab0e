"""Keycloak client for the service account and user impersonation."""

from __future__ import annotations

import logging
import threading
from typing import Any

import requests

from .config import KeycloakConfig
from .errors import UpstreamError
from .http_client import HttpClient
from .models import OpenIdToken, UserInfo

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT = "urn:ietf:params:oauth:grant-type:token-exchange"


class KeycloakClient(HttpClient):
    """Talks to Keycloak as the configured service user.

    ``login()`` must be called before any method that needs the service
    token. Impersonation uses the token-exchange grant of the configured
    client and does not need a prior login.
    """

    service_name = "keycloak"

    def __init__(self, config: KeycloakConfig, session: requests.Session | None = None) -> None:
        super().__init__(session)
        self._config = config
        self._realm_url = f"{config.url.rstrip('/')}/auth/realms/{config.realm}"
        self._admin_url = f"{config.url.rstrip('/')}/auth/admin/realms/{config.realm}"
        self._token: OpenIdToken | None = None
        self._lock = threading.Lock()

    @property
    def _token_url(self) -> str:
        return f"{self._realm_url}/protocol/openid-connect/token"

    def login(self) -> None:
        response = self._request(
            "POST",
            self._token_url,
            data={
                "grant_type": "password",
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "username": self._config.user,
                "password": self._config.password,
            },
        )
        token = self._parse(response, OpenIdToken)
        with self._lock:
            self._token = token
        logger.info("Logged in to keycloak", extra={"realm": self._config.realm})

    def logout(self) -> None:
        with self._lock:
            token = self._token
            self._token = None
        if token is None or not token.refresh_token:
            return
        self._request(
            "POST",
            f"{self._realm_url}/protocol/openid-connect/logout",
            expected=(200, 204),
            data={
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "refresh_token": token.refresh_token,
            },
        )

    def get_access_token(self) -> str:
        with self._lock:
            if self._token is None:
                raise UpstreamError("keycloak: not logged in")
            return self._token.access_token

    def get_user_info(self) -> UserInfo:
        response = self._request(
            "GET",
            f"{self._realm_url}/protocol/openid-connect/userinfo",
            headers={"Authorization": f"Bearer {self.get_access_token()}"},
        )
        return self._parse(response, UserInfo)

    def get_user_by_id(self, user_id: str) -> dict[str, Any]:
        response = self._request(
            "GET",
            f"{self._admin_url}/users/{user_id}",
            headers={"Authorization": f"Bearer {self.get_access_token()}"},
        )
        return self._parse(response, dict[str, Any])

    def get_impersonate_token(self, user_id: str) -> str:
        """Exchange the client credentials for an access token of ``user_id``."""
        response = self._request(
            "POST",
            self._token_url,
            data={
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "grant_type": TOKEN_EXCHANGE_GRANT,
                "requested_subject": user_id,
            },
        )
        return self._parse(response, OpenIdToken).access_token
