"""Pagination strategies for the source API.

Supported strategies (config "pagination.method"):
  - none:         No pagination -- single request
  - queryParams:  Offset based, the offset (in pages or in lines) and an
                  optional limit are written as query parameters
  - nextPageData: Next page URL read from the previous response body

Configurations without a "pagination" block but with a top-level
"next_page_path" use the deprecated legacy strategy, equivalent to
nextPageData without limit injection.

Each strategy is a function computing the next URL to fetch from the
pagination state and the previous page's payload (None before the first
request). Returning None ends the pagination. The sync loop also stops on
its own when a page comes back empty.
"""

import functools
import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from rest_dataset_sync.paths import get_value_by_path

LOGGER = logging.getLogger(__name__)

# Pages bigger than this are processed, but the pagination is too coarse
LARGE_PAGE_WARNING = 10000

# A run stops after this many pages, whatever the API keeps returning
MAX_PAGES = 10000


class PaginationError(ValueError):
    """Invalid pagination configuration."""


class PaginationState:
    """Position of a run in the source API.

    lines_offset and pages_offset count what has been fetched so far;
    next_page_url is None once pagination is over.
    """

    def __init__(self):
        self.lines_offset = 0
        self.pages_offset = 0
        self.last_page_lines = None
        self.next_page_url = None

    @property
    def first_page(self):
        return self.pages_offset == 0

    def advance(self, line_count):
        self.pages_offset += 1
        self.lines_offset += line_count
        self.last_page_lines = line_count

    def __repr__(self):
        return (f"PaginationState(pages_offset={self.pages_offset}, "
                f"lines_offset={self.lines_offset}, next_page_url={self.next_page_url!r})")


def set_query_params(url, params):
    """Return url with params written into its query string."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
             if k not in params]
    query.extend((k, str(v)) for k, v in params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _limit_params(options):
    limit_key = options.get("limit_key")
    limit_value = options.get("limit_value")
    if limit_key and limit_value:
        return {limit_key: limit_value}
    return {}


def paginate_none(api_url, options, state, payload):
    """Single request, no pagination."""
    return api_url if state.first_page else None


def paginate_query_params(api_url, options, state, payload):
    """Offset based pagination through query parameters.

    Options:
        offset_key    - Query param receiving the offset (required)
        offset_pages  - Count the offset in pages instead of lines
        offset_from_0 - First offset is 0 instead of 1
        limit_key     - Query param receiving the page size (optional)
        limit_value   - Page size; a shorter page ends the pagination
    """
    limit = _limit_params(options)
    if limit and not state.first_page and state.last_page_lines < int(options["limit_value"]):
        LOGGER.info("Last page had %d lines (limit %s): end of data",
                    state.last_page_lines, options["limit_value"])
        return None

    offset = state.pages_offset if options.get("offset_pages") else state.lines_offset
    if not options.get("offset_from_0"):
        offset += 1

    params = {options["offset_key"]: offset}
    params.update(limit)
    return set_query_params(api_url, params)


def paginate_next_page_data(api_url, options, state, payload):
    """Next page URL read from the previous response.

    Options:
        next_page_path - Path of the next URL in the response body (required)
        limit_key      - Query param receiving the page size (first request)
        limit_value    - Page size
    """
    if state.first_page:
        limit = _limit_params(options)
        return set_query_params(api_url, limit) if limit else api_url

    if payload is None:
        return None
    return get_value_by_path(payload, options["next_page_path"]) or None


def paginate_legacy_next_page_path(api_url, options, state, payload):
    """Deprecated top-level next_page_path pagination."""
    if state.first_page:
        return api_url
    if payload is None:
        return None
    return get_value_by_path(payload, options["next_page_path"]) or None


# Paginator registry
PAGINATORS = {
    "none": paginate_none,
    "queryParams": paginate_query_params,
    "nextPageData": paginate_next_page_data,
}

REQUIRED_OPTIONS = {
    "queryParams": ("offset_key",),
    "nextPageData": ("next_page_path",),
}


def get_paginator(config):
    """Get the paginator configured for a run.

    Args:
        config: The run configuration.

    Returns:
        A function(state, payload) returning the next URL or None.
    """
    api_url = config["api_url"]
    options = config.get("pagination")

    if not options:
        if config.get("next_page_path"):
            LOGGER.warning(
                "next_page_path is deprecated, use pagination.method=nextPageData instead."
            )
            return functools.partial(
                paginate_legacy_next_page_path, api_url,
                {"next_page_path": config["next_page_path"]},
            )
        return functools.partial(paginate_none, api_url, {})

    method = options.get("method", "none")
    if method not in PAGINATORS:
        raise PaginationError(
            f"Unknown pagination method: '{method}'. "
            f"Supported: {', '.join(PAGINATORS.keys())}"
        )
    for key in REQUIRED_OPTIONS.get(method, ()):
        if not options.get(key):
            raise PaginationError(f"pagination.{key} is required for the {method} method")

    return functools.partial(PAGINATORS[method], api_url, options)
