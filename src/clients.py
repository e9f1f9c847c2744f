"""
REST API client for Google Compute Engine (v1 API).
"""

import logging
import os
import threading
import time
from typing import Dict, List, Optional

import google.auth
import google.auth.exceptions
import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from errors import ApiError, ConfigError, TransportError
from models import ResourceKind

logger = logging.getLogger(__name__)

API_BASE = "https://compute.googleapis.com/compute/v1"
SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


def load_credentials(keyfile: Optional[str] = None):
    """
    Load credentials for the Compute Engine API.

    Args:
        keyfile: Optional path to a service account JSON key. When omitted,
            Application Default Credentials are used.

    Returns:
        google.auth credentials object

    Raises:
        ConfigError: If keyfile is given but does not exist, or no default
            credentials are available
    """
    if keyfile:
        path = os.path.expanduser(keyfile)
        if not os.path.isfile(path):
            raise ConfigError(
                f"Could not find gce_keyfile for Google Compute Engine at '{path}'"
            )
        logger.debug(f"Loading service account credentials from {path}")
        return service_account.Credentials.from_service_account_file(
            path, scopes=SCOPES
        )

    try:
        creds, _ = google.auth.default(scopes=SCOPES)
    except google.auth.exceptions.DefaultCredentialsError as e:
        raise ConfigError(f"No Google Cloud credentials available: {e}") from e
    return creds


class ComputeRestClient:
    """REST client for the Compute Engine v1 API."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        credentials=None,
        timeout_s: int = 60,
        max_retries: int = 3,
        base_delay: float = 2.0,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the Compute Engine REST client.

        Args:
            credentials: Already-loaded credentials; defaults to load_credentials()
            timeout_s: Timeout for every single HTTP request in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
            cancel_event: Event that cuts retry waits short when set
        """
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.cancel_event = cancel_event or threading.Event()

        if credentials is None:
            credentials = load_credentials()
        self.session = AuthorizedSession(credentials)

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        if path.startswith("https://"):
            return path
        return f"{API_BASE}/{path.lstrip('/')}"

    def _path(
        self, kind: ResourceKind, project: str, zone: str, name: Optional[str] = None
    ) -> str:
        """Collection (or item, when name is given) path for a resource kind."""
        if kind.is_global:
            path = f"projects/{project}/global/{kind.collection}"
        else:
            path = f"projects/{project}/zones/{zone}/{kind.collection}"
        return f"{path}/{name}" if name else path

    def _request_with_retry(
        self, method: str, url: str, **kwargs
    ) -> requests.Response:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST, DELETE)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            The final (non-retryable) response

        Raises:
            TransportError: If max retries exceeded or the wait was cancelled
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )
            except requests.exceptions.RequestException as e:
                last_error = str(e)
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}"
                )
            else:
                if resp.status_code not in self.RETRYABLE_STATUS_CODES:
                    return resp
                last_error = f"HTTP {resp.status_code}: {self._error_message(resp)}"
                delay = self._calculate_delay(attempt, resp)
                logger.warning(
                    f"Retryable error {last_error}, attempt {attempt + 1}/{self.max_retries + 1}"
                )

            if attempt < self.max_retries:
                logger.debug(f"Waiting {delay:.1f}s before retrying {method} {url}")
                if self.cancel_event.wait(delay):
                    raise TransportError(
                        f"Retries cancelled for {method} {url}. Last error: {last_error}"
                    )

        raise TransportError(f"Max retries exceeded for {method} {url}. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 60.0)

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            return resp.json().get("error", {}).get("message", "") or resp.text[:200]
        except ValueError:
            return resp.text[:200]

    def _json(self, method: str, url: str, ok=(200,), **kwargs) -> Optional[Dict]:
        """
        Run a request and decode its JSON body.

        Returns:
            Decoded body, or None on HTTP 404

        Raises:
            ApiError: On any other non-success status
        """
        resp = self._request_with_retry(method, url, **kwargs)
        if resp.status_code == 404:
            return None
        if resp.status_code not in ok:
            raise ApiError(resp.status_code, self._error_message(resp))
        return resp.json()

    def insert(
        self, kind: ResourceKind, project: str, zone: str, body: Dict, params=None
    ) -> Dict:
        """
        Insert a resource.

        Returns:
            Operation document to poll

        Raises:
            ApiError: If the API rejects the request
        """
        url = self._url(self._path(kind, project, zone))
        data = self._json("POST", url, ok=(200, 201, 202), json=body, params=params)
        if data is None:
            raise ApiError(404, f"{kind.collection} collection not found: {url}")
        return data

    def get(
        self, kind: ResourceKind, project: str, zone: str, name: str
    ) -> Optional[Dict]:
        """Get a resource document, or None when it does not exist."""
        return self._json("GET", self._url(self._path(kind, project, zone, name)))

    def delete(
        self, kind: ResourceKind, project: str, zone: str, name: str
    ) -> Optional[Dict]:
        """Delete a resource; returns the operation document, or None when already gone."""
        url = self._url(self._path(kind, project, zone, name))
        return self._json("DELETE", url, ok=(200, 202))

    def _list(self, url: str, params: Optional[Dict] = None) -> List[Dict]:
        """Follow nextPageToken until every item is collected."""
        items: List[Dict] = []
        page_token: Optional[str] = None

        while True:
            page_params = dict(params or {})
            if page_token:
                page_params["pageToken"] = page_token

            data = self._json("GET", url, params=page_params)
            if data is None:
                raise ApiError(404, f"List failed, collection not found: {url}")
            items.extend(data.get("items", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return items

    def list(self, kind: ResourceKind, project: str, zone: str) -> List[Dict]:
        """List every resource of a kind in a project (and zone, for zonal kinds)."""
        return self._list(self._url(self._path(kind, project, zone)))

    def list_images(self, project: str) -> List[Dict]:
        """List every image published in a project."""
        return self._list(self._url(f"projects/{project}/global/images"))

    def get_operation(self, operation: Dict) -> Optional[Dict]:
        """
        Refresh an operation document.

        Args:
            operation: Operation document previously returned by the API

        Returns:
            Current operation document, or None if the operation is unknown
        """
        link = operation.get("selfLink")
        if not link:
            name = operation["name"]
            zone = operation.get("zone", "").rsplit("/", 1)[-1]
            project = operation["project"]
            if zone:
                link = f"projects/{project}/zones/{zone}/operations/{name}"
            else:
                link = f"projects/{project}/global/operations/{name}"
        return self._json("GET", self._url(link))

    def set_metadata(
        self, project: str, zone: str, instance: str, fingerprint: str, items: List[Dict]
    ) -> Dict:
        """Replace an instance's metadata; returns the operation document."""
        path = self._path(ResourceKind.INSTANCE, project, zone, instance)
        body = {
            "kind": "compute#metadata",
            "fingerprint": fingerprint,
            "items": items,
        }
        data = self._json("POST", self._url(f"{path}/setMetadata"), json=body)
        if data is None:
            raise ApiError(404, f"Instance not found: {instance}")
        return data

    def get_machine_type(self, project: str, zone: str, name: str) -> Optional[Dict]:
        """Get a machine type document."""
        return self._json(
            "GET", self._url(f"projects/{project}/zones/{zone}/machineTypes/{name}")
        )

    def get_network(self, project: str, name: str) -> Optional[Dict]:
        """Get a VPC network document."""
        return self._json(
            "GET", self._url(f"projects/{project}/global/networks/{name}")
        )
