"""InfluxDB 1.x client for the measurements written by serving instances.

Only the three InfluxQL statements the cleanup needs are supported, sent to
the HTTP ``/query`` endpoint.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from .config import InfluxConfig
from .errors import UpstreamError
from .http_client import HttpClient

logger = logging.getLogger(__name__)


def _quote_identifier(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class InfluxClient(HttpClient):
    service_name = "influxdb"

    def __init__(self, config: InfluxConfig, session: requests.Session | None = None) -> None:
        super().__init__(session)
        self._url = config.url
        self._auth = (config.username, config.password)

    def _query(self, query: str, database: str | None = None, method: str = "GET") -> list[Any]:
        params = {"q": query}
        if database:
            params["db"] = database
        response = self._request(method, f"{self._url}/query", params=params, auth=self._auth)
        body = self._parse(response, dict[str, Any])

        results = body.get("results") or []
        if not results:
            return []
        result = results[0]
        if "error" in result:
            raise UpstreamError(f"influxdb: {query!r} failed: {result['error']}")

        values: list[Any] = []
        for series in result.get("series") or []:
            for row in series.get("values") or []:
                values.append(row[0])
        return values

    def get_databases(self) -> list[str]:
        return [str(name) for name in self._query("SHOW DATABASES") if name != "_internal"]

    def get_measurements(self, database: str) -> list[str]:
        return [str(name) for name in self._query("SHOW MEASUREMENTS", database)]

    def drop_measurement(self, measurement: str, database: str) -> None:
        self._query(f"DROP MEASUREMENT {_quote_identifier(measurement)}", database, method="POST")
        logger.info(
            "Dropped measurement", extra={"measurement": measurement, "database": database}
        )
