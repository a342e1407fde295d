"""
HTTP client for a running journey API, with retry support.
"""

import httpx
from typing import Any, Dict, List, Optional
import logging

from .utils import retry_api, handle_http_error

logger = logging.getLogger(__name__)


class JourneyApiClient:
    """
    Client for the journey HTTP API.

    Transient failures (timeouts, network errors, 429/5xx) are retried with
    backoff; other 4xx responses raise PermanentError immediately.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize the client.

        Args:
            base_url: API base URL, e.g. http://localhost:3000/api
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    @retry_api
    def _request(self, method: str, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        Execute one API call.

        Decorated with retry logic for transient failures.
        """
        response = self.client.request(method, path, json=json, params=params)
        if response.status_code >= 400:
            handle_http_error(response)
        return response

    def submit_journey(self, journey: Dict[str, Any]) -> str:
        """Create a journey and return its id."""
        return self._request("POST", "/journeys", json=journey).json()["journeyId"]

    def list_journeys(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/journeys").json()["journeys"]

    def get_journey(self, journey_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/journeys/{journey_id}").json()

    def trigger(self, journey_id: str, patient_context: Dict[str, Any]) -> str:
        """Start a run and return its id."""
        response = self._request("POST", f"/journeys/{journey_id}/trigger", json=patient_context)
        return response.json()["runId"]

    def get_run(self, run_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/journeys/runs/{run_id}").json()

    def list_runs(self, status: str = "in_progress") -> List[Dict[str, Any]]:
        return self._request("GET", "/journeys/runs", params={"status": status}).json()["runs"]

    def cancel_run(self, run_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/journeys/runs/{run_id}/cancel").json()

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
