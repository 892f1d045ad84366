"""Sync logic: source API pages into a dataset.

A run goes through these steps:
  1. Initialization: configuration checks, source API authentication
  2. Dataset: create it (then record its id in the configuration) or
     fetch it and reconcile its schema with the configuration
  3. Fetch loop, one page at a time:
       fetch -> extract records -> transform to lines
       -> store pending schema changes and wait for them to be applied
       -> bulk upload the lines
       -> compute the next page URL

Everything is sequential. A schema change is always finalized on the
dataset before lines using it are uploaded.
"""

from collections import namedtuple

import requests
import singer

from rest_dataset_sync.auth import resolve_auth
from rest_dataset_sync.client import (
    FINALIZE_EVENT,
    DatasetApiError,
    DatasetClient,
    RestApiError,
    SourceClient,
)
from rest_dataset_sync.config import validate_config
from rest_dataset_sync.csv_export import CsvExport
from rest_dataset_sync.pagination import (
    LARGE_PAGE_WARNING,
    MAX_PAGES,
    PaginationState,
    get_paginator,
)
from rest_dataset_sync.record_extractor import extract_records
from rest_dataset_sync.schema import (
    SchemaInferrer,
    build_explicit_schema,
    parse_columns,
    reconcile_schema,
    writable_schema,
)
from rest_dataset_sync.transform import format_inferred_record, transform_record

LOGGER = singer.get_logger()


class ConfigPatch(namedtuple("ConfigPatch", ["next_mode", "dataset_ref"])):
    """Configuration change to persist once a dataset has been created."""

    def to_dict(self):
        return {"dataset_mode": self.next_mode, "dataset": dict(self.dataset_ref)}


SyncResult = namedtuple("SyncResult", ["dataset_id", "pages", "lines", "config_patch"])


def _log_step(name):
    LOGGER.info("Step: %s", name)


class DatasetSync:
    """One synchronization run.

    Args:
        config: Validated run configuration.
        dataset_client: DatasetClient (or compatible) for the dataset API.
        source_client: SourceClient fetching the source API pages.
        patch_config: Callable persisting a configuration patch, or None.
    """

    def __init__(self, config, dataset_client, source_client, patch_config=None):
        self.config = config
        self.dataset_client = dataset_client
        self.source_client = source_client
        self.patch_config = patch_config

        self.detect_schema = config["detect_schema"]
        self.is_file = config["dataset_type"] == "file"
        self.columns = [] if self.detect_schema else parse_columns(config["columns"])

        self.dataset = None
        self.schema = []
        self.primary_key = []
        self.schema_changed = False
        self.inferrer = None
        self.export = None

    # ------------------------------------------------------------------
    # Dataset
    # ------------------------------------------------------------------

    def _compute_schema(self):
        if self.detect_schema:
            return [], []
        return build_explicit_schema(self.columns)

    def ensure_dataset(self):
        """Create the dataset or check the existing one.

        Returns:
            A ConfigPatch when a dataset was created, else None.
        """
        self.schema, self.primary_key = self._compute_schema()

        if self.config["dataset_mode"] == "create":
            if self.is_file:
                # file datasets are created by the upload at the end of the run
                _log_step("Preparing the file dataset")
                return None
            return self._create_dataset()

        self._verify_dataset()
        return None

    def _apply_patch(self, patch):
        if self.patch_config is None:
            LOGGER.info("No configuration store, configuration change not persisted: %s",
                        patch.to_dict())
            return
        self.patch_config(patch.to_dict())

    def _create_dataset(self):
        _log_step("Dataset creation")
        draft = {
            "isRest": True,
            "title": self.config["dataset"].get("title"),
            "primaryKey": self.primary_key,
            "schema": self.schema,
        }
        if self.config["dataset"].get("id"):
            draft["id"] = self.config["dataset"]["id"]

        self.dataset = self.dataset_client.create_dataset(draft)
        LOGGER.info('Dataset created, id="%s", title="%s"',
                    self.dataset["id"], self.dataset.get("title"))

        patch = ConfigPatch("update", {"id": self.dataset["id"],
                                       "title": self.dataset.get("title")})
        self._apply_patch(patch)
        self.dataset_client.wait_for_journal_event(self.dataset["id"], FINALIZE_EVENT,
                                                   change=self.dataset)

        if self.detect_schema:
            self.inferrer = SchemaInferrer(self.dataset.get("schema") or [])
        return patch

    def _verify_dataset(self):
        _log_step("Dataset verification")
        dataset_id = self.config["dataset"]["id"]
        self.dataset = self.dataset_client.get_dataset(dataset_id)
        if not self.dataset:
            raise DatasetApiError(f"The dataset does not exist, id={dataset_id}",
                                  status_code=404)
        LOGGER.info('The dataset exists, id="%s", title="%s"',
                    self.dataset["id"], self.dataset.get("title"))

        existing = self.dataset.get("schema") or []
        if self.is_file:
            return
        if self.detect_schema:
            self.inferrer = SchemaInferrer(existing)
            return

        self.schema, self.schema_changed = reconcile_schema(
            self.schema, existing, force_update=self.config["force_update"]
        )
        if self.schema_changed:
            LOGGER.info("The dataset schema will be updated before the first upload")

    # ------------------------------------------------------------------
    # Schema updates and uploads
    # ------------------------------------------------------------------

    def _pending_schema(self):
        if self.inferrer is not None:
            return self.inferrer.schema if self.inferrer.changed else None
        return self.schema if self.schema_changed else None

    def _flush_schema(self):
        schema = self._pending_schema()
        if schema is None:
            return
        dataset_id = self.dataset["id"]
        LOGGER.info("Updating the schema of dataset %s (%d fields)", dataset_id, len(schema))
        updated = self.dataset_client.update_schema(dataset_id, writable_schema(schema))
        self.dataset_client.wait_for_journal_event(dataset_id, FINALIZE_EVENT, change=updated)
        if self.inferrer is not None:
            self.inferrer.mark_persisted()
        self.schema_changed = False

    def _upload(self, lines):
        """Send one page of lines. Returns the number of lines accepted."""
        if self.export is not None:
            self.export.write_lines(lines)
            return len(lines)

        LOGGER.info("Uploading %d lines", len(lines))
        try:
            self.dataset_client.bulk_lines(self.dataset["id"], lines)
        except (RestApiError, requests.RequestException) as e:
            if self.config["upload_errors"] != "log":
                raise
            LOGGER.error("Upload of %d lines failed, continuing: %s", len(lines), e)
            return 0
        return len(lines)

    def _transform(self, records):
        if self.detect_schema:
            falsy_as_missing = self.config["falsy_as_missing"]
            return [format_inferred_record(record, self.inferrer, falsy_as_missing)
                    for record in records]
        return [transform_record(record, self.columns, blank_missing=self.is_file)
                for record in records]

    # ------------------------------------------------------------------
    # Fetch loop
    # ------------------------------------------------------------------

    def fetch_loop(self):
        """Fetch, transform and upload every page.

        Returns:
            The final PaginationState and the number of lines sent.
        """
        _log_step("Fetching, converting and uploading data")
        paginate = get_paginator(self.config)
        result_path = self.config["result_path"]
        state = PaginationState()
        total_lines = 0

        state.next_page_url = paginate(state, None)
        while state.next_page_url:
            if state.pages_offset >= MAX_PAGES:
                LOGGER.warning("Stopping after %d pages, the API keeps returning a next page",
                               MAX_PAGES)
                break
            url = state.next_page_url
            LOGGER.info("Fetching %s", url)
            payload = self.source_client.get_page(url)

            records = extract_records(payload, result_path)
            if not records:
                LOGGER.info("Empty page, end of data")
                state.next_page_url = None
                break
            if len(records) > LARGE_PAGE_WARNING:
                LOGGER.warning(
                    "Page of %d lines: the pagination is too coarse, "
                    "consider a smaller page size.", len(records)
                )

            lines = self._transform(records)
            if lines:
                if self.export is None:
                    self._flush_schema()
                total_lines += self._upload(lines)

            state.advance(len(records))
            state.next_page_url = paginate(state, payload)
            if state.next_page_url == url:
                LOGGER.warning("The next page of %s is the same URL, stopping", url)
                state.next_page_url = None

        LOGGER.info("Completed: %d pages, %d lines", state.pages_offset, total_lines)
        return state, total_lines

    def _upload_file(self):
        """Send the CSV export; creates the dataset in create mode."""
        if self.export.line_count == 0:
            LOGGER.warning("No lines fetched, the file dataset is not uploaded")
            return None

        _log_step("File upload")
        dataset_id = self.dataset["id"] if self.dataset else None
        title = (self.dataset or {}).get("title") or self.config["dataset"].get("title")
        schema = [{"key": field["key"], "title": field["title"]} for field in self.schema]

        with self.export.open_for_upload() as fileobj:
            dataset = self.dataset_client.upload_file(
                dataset_id, title, schema, "data.csv", fileobj
            )

        patch = None
        if dataset_id is None:
            self.dataset = dataset
            patch = ConfigPatch("update", {"id": dataset["id"], "title": dataset.get("title")})
            self._apply_patch(patch)
        self.dataset_client.wait_for_journal_event(dataset["id"], FINALIZE_EVENT, change=dataset)
        return patch

    def run(self):
        patch = self.ensure_dataset()

        if not self.is_file:
            state, lines = self.fetch_loop()
            return SyncResult(self.dataset["id"], state.pages_offset, lines, patch)

        with CsvExport([field["key"] for field in self.schema]) as export:
            self.export = export
            state, lines = self.fetch_loop()
            patch = self._upload_file() or patch
        self.export = None
        dataset_id = self.dataset["id"] if self.dataset else None
        return SyncResult(dataset_id, state.pages_offset, lines, patch)


def sync(config, dataset_client=None, source_client=None, patch_config=None):
    """Main sync entry point.

    Args:
        config: Run configuration dict.
        dataset_client: Dataset API client (built from config if None).
        source_client: Source API client (built from config, with the
                       resolved auth applied, if None).
        patch_config: Callable persisting configuration patches.

    Returns:
        A SyncResult.
    """
    _log_step("Initialization")
    config = validate_config(config)

    if source_client is None:
        source_client = SourceClient(config, resolve_auth(config))
    if dataset_client is None:
        dataset_client = DatasetClient(config)

    run = DatasetSync(config, dataset_client, source_client, patch_config)
    result = run.run()
    LOGGER.info("Sync complete.")
    return result
