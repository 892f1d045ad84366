"""HTTP clients.

SourceClient fetches pages of the source API:
  - One GET per page on a session carrying the run's credentials
  - Long fixed timeout per page (slow upstream APIs are tolerated)
  - No retry by default; "fetch_max_tries" > 1 enables exponential
    backoff on 429, 5xx and connection errors

DatasetClient talks to the dataset API:
  - POST   api/v1/datasets                 create a REST dataset
  - GET    api/v1/datasets/{id}            fetch a dataset (schema, status)
  - POST   api/v1/datasets/{id}            update the schema (multipart)
  - POST   api/v1/datasets/{id}/_bulk_lines  upload lines
  - wait_for_journal_event() polls the dataset until a structural change
    (creation, schema update) is finalized
"""

import datetime
import json
import math
import time
from email.utils import parsedate_to_datetime

import backoff
import requests
import singer

LOGGER = singer.get_logger()

FINALIZE_EVENT = "finalize-end"


def _retry_after_seconds(value, default=60):
    """Seconds to wait before the next page fetch after a 429.

    The Retry-After header is either a delay ("120") or an HTTP-date.
    """
    if not value:
        return default
    value = str(value).strip()
    try:
        return max(1, math.floor(float(value)))
    except ValueError:
        pass
    try:
        until = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        LOGGER.warning("Unreadable Retry-After '%s', waiting %ds", value, default)
        return default
    wait = (until - datetime.datetime.now(tz=until.tzinfo)).total_seconds()
    return max(1, math.floor(wait))


class RestApiError(Exception):
    """Base error for HTTP requests, with the response status and body."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitError(RestApiError):
    """HTTP 429 - Too Many Requests."""


class ServerError(RestApiError):
    """HTTP 5xx server-side error."""


class ClientError(RestApiError):
    """HTTP 4xx client-side error."""


class DatasetApiError(RestApiError):
    """The dataset API refused a request or failed to process a change."""


def _log_fetch_retry(details):
    LOGGER.warning("Page fetch %s failed %d times, retrying in %.1fs",
                   details["args"][0], details["tries"], details["wait"])


def _raise_for_status(resp, error_class=None):
    if resp.status_code < 400:
        return
    body = resp.text[:500]
    if error_class is not None:
        raise error_class(
            f"{resp.request.method} {resp.url} failed ({resp.status_code}): {body}",
            status_code=resp.status_code, body=body,
        )
    if resp.status_code == 429:
        raise RateLimitError(f"429: {body}", status_code=429, body=body)
    if resp.status_code >= 500:
        raise ServerError(f"Server error {resp.status_code}: {body}",
                          status_code=resp.status_code, body=body)
    raise ClientError(f"Client error {resp.status_code}: {body}",
                      status_code=resp.status_code, body=body)


class SourceClient:
    """Page fetcher for the source API."""

    def __init__(self, config, auth=None):
        self.timeout = config.get("request_timeout", 300)
        self.max_tries = max(1, int(config.get("fetch_max_tries") or 1))

        self._session = requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": config.get("user_agent", "rest-dataset-sync/1.0"),
        })
        if auth is not None:
            auth.apply(self._session)

        self._fetch = backoff.on_exception(
            backoff.expo,
            (RateLimitError, ServerError, requests.ConnectionError, requests.Timeout),
            max_tries=self.max_tries,
            on_backoff=_log_fetch_retry,
        )(self._fetch_once)

    def _fetch_once(self, url):
        LOGGER.debug("REQUEST: GET %s", url)
        resp = self._session.get(url, timeout=self.timeout)

        if resp.status_code == 429 and self.max_tries > 1:
            wait = _retry_after_seconds(resp.headers.get("Retry-After"))
            LOGGER.warning("Rate limited (429). Waiting %s seconds", wait)
            time.sleep(wait)

        _raise_for_status(resp)
        return resp

    def get_page(self, url):
        """Fetch one page and return its parsed JSON, or None if empty."""
        resp = self._fetch(url)
        if not resp.content or not resp.content.strip():
            return None
        try:
            return resp.json()
        except ValueError:
            content_type = resp.headers.get("Content-Type", "")
            raise ClientError(
                f"Expected JSON response but got {content_type}. "
                f"Status: {resp.status_code}. Body preview: {resp.text[:200]}",
                status_code=resp.status_code, body=resp.text[:200],
            ) from None


class DatasetClient:
    """Client for the dataset API."""

    def __init__(self, config):
        self.base_url = config["dataset_api_url"].rstrip("/")
        self.timeout = config.get("request_timeout", 300)
        self.poll_interval = config.get("finalize_poll_interval", 2)
        self.finalize_timeout = config.get("finalize_timeout", 600)

        self._session = requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": config.get("user_agent", "rest-dataset-sync/1.0"),
        })
        if config.get("dataset_api_key"):
            self._session.headers["x-apiKey"] = config["dataset_api_key"]

    def _url(self, path):
        return f"{self.base_url}/api/v1/{path.lstrip('/')}"

    def _request(self, method, path, **kwargs):
        url = self._url(path)
        LOGGER.debug("REQUEST: %s %s", method, url)
        resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        _raise_for_status(resp, DatasetApiError)
        return resp

    def create_dataset(self, draft):
        return self._request("POST", "datasets", json=draft).json()

    def get_dataset(self, dataset_id):
        """Fetch a dataset, or None if it does not exist."""
        try:
            return self._request("GET", f"datasets/{dataset_id}").json()
        except DatasetApiError as e:
            if e.status_code == 404:
                return None
            raise

    def update_schema(self, dataset_id, schema):
        files = {"schema": (None, json.dumps(schema), "application/json")}
        return self._request("POST", f"datasets/{dataset_id}", files=files).json()

    def bulk_lines(self, dataset_id, lines):
        resp = self._request("POST", f"datasets/{dataset_id}/_bulk_lines", json=lines)
        return resp.json() if resp.content else {}

    def upload_file(self, dataset_id, title, schema, filename, fileobj):
        """Create (dataset_id None) or replace a file dataset."""
        path = f"datasets/{dataset_id}" if dataset_id else "datasets"
        files = {
            "schema": (None, json.dumps(schema), "application/json"),
            "title": (None, title),
            "file": (filename, fileobj, "text/csv"),
        }
        return self._request("POST", path, files=files).json()

    def _is_finalized(self, dataset_id, previous_finalized_at):
        dataset = self.get_dataset(dataset_id)
        if dataset is None:
            raise DatasetApiError(f"Dataset {dataset_id} disappeared while waiting",
                                  status_code=404)
        status = dataset.get("status")
        if status == "error":
            raise DatasetApiError(f"Dataset {dataset_id} is in error status")
        if status != "finalized":
            return False
        # a status still reporting the previous finalization is stale
        return previous_finalized_at is None or dataset.get("finalizedAt") != previous_finalized_at

    def wait_for_journal_event(self, dataset_id, event_name=FINALIZE_EVENT, change=None):
        """Block until a structural change on the dataset is finalized.

        Args:
            dataset_id: The dataset being changed.
            event_name: Only "finalize-end" is supported.
            change: The dataset returned by the request that made the change.
                    When it carries a finalizedAt date, only a later
                    finalization ends the wait.

        Raises:
            DatasetApiError: If the dataset ends in error or the wait times out.
        """
        if event_name != FINALIZE_EVENT:
            raise ValueError(f"Unsupported journal event '{event_name}'")

        previous_finalized_at = (change or {}).get("finalizedAt")
        LOGGER.info("Waiting for dataset %s to be finalized", dataset_id)
        poll = backoff.on_predicate(
            backoff.constant,
            interval=self.poll_interval,
            max_time=self.finalize_timeout,
            jitter=None,
        )(lambda: self._is_finalized(dataset_id, previous_finalized_at))

        if not poll():
            raise DatasetApiError(
                f"Dataset {dataset_id} was not finalized after {self.finalize_timeout}s"
            )
