"""
Integration tests for the SQLAlchemy-backed dataset and key-value store.
"""

import json

import pytest

from db import DatasetSink, KeyValueStore, create_session_factory


pytestmark = pytest.mark.integration


def test_dataset_push_keeps_insertion_order(session_factory):
    sink = DatasetSink(session_factory, name="default")

    sink.push({"name": "Cafe Alpha", "reviews": [{"rating": 5.0}]})
    sink.push({"name": "Cafe Bravo", "reviews": []})

    assert sink.count() == 2
    assert sink.items() == [
        {"name": "Cafe Alpha", "reviews": [{"rating": 5.0}]},
        {"name": "Cafe Bravo", "reviews": []},
    ]


def test_datasets_are_isolated_by_name(session_factory):
    listings = DatasetSink(session_factory, name="default")
    failed = DatasetSink(session_factory, name="FAILED_REQUESTS")

    listings.push({"name": "Cafe Alpha"})
    failed.push({"url": "https://www.google.com/maps/place/Broken", "retryCount": 3})

    assert listings.items() == [{"name": "Cafe Alpha"}]
    assert failed.items() == [{"url": "https://www.google.com/maps/place/Broken", "retryCount": 3}]


def test_dataset_export_writes_json_array(session_factory, tmp_path):
    sink = DatasetSink(session_factory)
    sink.push({"name": "Café Ünïcode", "phone": None})
    target = tmp_path / "out" / "results.json"

    written = sink.export(str(target))

    assert written == 1
    assert json.loads(target.read_text(encoding="utf-8")) == [{"name": "Café Ünïcode", "phone": None}]


def test_key_value_get_default_and_overwrite(kv_store):
    assert kv_store.get("STATE") is None
    assert kv_store.get("STATE", {}) == {}

    kv_store.set("STATE", {"scrapedItemsCount": 1})
    kv_store.set("STATE", {"scrapedItemsCount": 2, "costCounters": {"searches": 1}})

    assert kv_store.get("STATE") == {"scrapedItemsCount": 2, "costCounters": {"searches": 1}}


def test_key_value_stores_plain_strings(kv_store):
    kv_store.set("ERROR_SEARCH_PAGE_1", "<html><body>drift</body></html>")

    assert kv_store.get("ERROR_SEARCH_PAGE_1") == "<html><body>drift</body></html>"


def test_state_survives_new_session_factory(tmp_path):
    url = f"sqlite:///{tmp_path / 'nested' / 'state.db'}"
    KeyValueStore(create_session_factory(url)).set("STATE", {"scrapedItemsCount": 7})

    reopened = KeyValueStore(create_session_factory(url))

    assert reopened.get("STATE") == {"scrapedItemsCount": 7}
