"""Synchronize a paginated REST API into a dataset.

A configuration-driven sync that walks every page of a JSON API,
reshapes each record into a flat line and bulk-uploads the lines into a
REST dataset, keeping the dataset schema consistent across runs.

Features:
  - Explicit schema from configured columns, or schema inferred from rows
  - Schema reconciliation on update runs (force_update for new columns)
  - Multivalued columns, values nested in arrays at any depth
  - Auth methods: no_auth, bearer_auth, basic_auth, api_key, oauth2, session
  - Pagination: none, queryParams (offset/limit), nextPageData (next URL)
  - Dotted paths or JSONPath to locate records in responses
  - REST datasets (bulk lines) or file datasets (CSV upload)

Usage:
  rest-dataset-sync --config config.json

After a dataset is created, its id is written back into config.json and
the dataset mode switched to "update", so the next run targets it.
"""

import singer
from singer import utils

from rest_dataset_sync.config import REQUIRED_CONFIG_KEYS, ConfigStore
from rest_dataset_sync.sync import sync

LOGGER = singer.get_logger()


@utils.handle_top_exception(LOGGER)
def main():
    """Entry point for rest-dataset-sync."""
    args = utils.parse_args(REQUIRED_CONFIG_KEYS)
    store = ConfigStore(args.config_path)

    result = sync(args.config, patch_config=store.patch_config)
    LOGGER.info("Dataset %s: %d lines from %d pages",
                result.dataset_id, result.lines, result.pages)


if __name__ == "__main__":
    main()
