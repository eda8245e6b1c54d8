# dowstats/clients/point_service.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from dowstats.errors import UpstreamUnavailable
from dowstats.schemas.metric import Metric, Point

logger = structlog.get_logger(__name__)


class PointServiceClient:
    """
    Thin HTTP client for the remote point service.

    Serves both the point directory (`list_points`, `get_point`) and the
    historical metric source (`select_metrics`). Transport failures, timeouts,
    5xx answers and unparseable payloads all surface as UpstreamUnavailable.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "PointServiceClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _get(self, path: str, params: Optional[dict] = None, allow_404: bool = False) -> Any:
        try:
            resp = self._client.get(path, params=params)
        except httpx.TimeoutException as ex:
            raise UpstreamUnavailable(f"GET {path} timed out") from ex
        except httpx.HTTPError as ex:
            raise UpstreamUnavailable(f"GET {path} failed: {ex}") from ex

        if allow_404 and resp.status_code == 404:
            return None
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as ex:
            raise UpstreamUnavailable(f"GET {path} returned {resp.status_code}") from ex
        try:
            return resp.json()
        except ValueError as ex:
            raise UpstreamUnavailable(f"GET {path} returned invalid JSON") from ex

    def list_points(self, limit: int, offset: int) -> List[Point]:
        payload = self._get("/points", params={"limit": limit, "offset": offset})
        try:
            return [Point.model_validate(p) for p in payload or []]
        except ValidationError as ex:
            raise UpstreamUnavailable(f"malformed point page at offset {offset}") from ex

    def get_point(self, point_id: int) -> Optional[Point]:
        payload = self._get(f"/points/{point_id}", allow_404=True)
        if payload is None:
            return None
        try:
            return Point.model_validate(payload)
        except ValidationError as ex:
            raise UpstreamUnavailable(f"malformed point {point_id}") from ex

    def select_metrics(
        self,
        point_id: int,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> List[Metric]:
        params = {"from": start.isoformat()}
        if end is not None:
            params["to"] = end.isoformat()
        payload = self._get(f"/points/{point_id}/metrics", params=params)
        try:
            metrics = [Metric.model_validate({"point_id": point_id, **m}) for m in payload or []]
        except (ValidationError, TypeError) as ex:
            raise UpstreamUnavailable(f"malformed metrics for point {point_id}") from ex
        return sorted(metrics, key=lambda m: m.timestamp)


__all__ = ["PointServiceClient"]
