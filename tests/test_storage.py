"""Unit tests for the SQLite snapshot store."""

from __future__ import annotations

import sqlite3

import pandas as pd
import pytest

from dexsnap.errors import DuplicateKey, SchemaError
from dexsnap.models import RejectedPair
from dexsnap.storage import PAIRS_COLUMNS, PAIRS_TABLE, SqlitePairStore
from fakes import make_pair


def _store(tmp_path) -> SqlitePairStore:
    return SqlitePairStore(tmp_path / "uniswapv2_pairs_1.db")


def test_initialize_twice_keeps_schema_and_no_rows(tmp_path) -> None:
    """Repeated reset + initialize should always give an empty declared table."""
    store = _store(tmp_path)
    store.initialize()
    store.append([make_pair("0x01")])
    store.close()

    for _ in range(2):
        store.reset()
        store.initialize()
        assert store.count() == 0
    columns = [row[1] for row in store.connection.execute(f"PRAGMA table_info({PAIRS_TABLE})")]
    store.close()

    assert columns == list(PAIRS_COLUMNS)


def test_initialize_is_idempotent_without_reset(tmp_path) -> None:
    store = _store(tmp_path)
    store.initialize()
    store.append([make_pair("0x01")])
    store.initialize()

    assert store.count() == 1
    store.close()


def test_reset_reports_whether_file_existed(tmp_path) -> None:
    store = _store(tmp_path)

    assert store.reset() is False
    store.initialize()
    store.close()
    assert store.reset() is True
    assert not store.path.exists()


def test_append_persists_batch_in_id_order(tmp_path) -> None:
    with _store(tmp_path) as store:
        written = store.append([make_pair("0x02"), make_pair("0x01")])
        loaded = store.load()

    assert written == 2
    assert [p.id for p in loaded] == ["0x01", "0x02"]


def test_duplicate_within_batch_rolls_back_whole_batch(tmp_path) -> None:
    """Atomic batches: one repeated id means nothing from the batch is kept."""
    with _store(tmp_path) as store:
        with pytest.raises(DuplicateKey) as excinfo:
            store.append([make_pair("0x01"), make_pair("0x02"), make_pair("0x01")])
        count = store.count()

    assert excinfo.value.keys == ["0x01"]
    assert count == 0


def test_duplicate_against_stored_row_is_rejected(tmp_path) -> None:
    with _store(tmp_path) as store:
        store.append([make_pair("0x01")])
        with pytest.raises(DuplicateKey) as excinfo:
            store.append([make_pair("0x02"), make_pair("0x01")])
        ids = [p.id for p in store.load()]

    assert excinfo.value.keys == ["0x01"]
    assert ids == ["0x01"]


def test_ids_differing_only_in_case_are_distinct(tmp_path) -> None:
    with _store(tmp_path) as store:
        store.append([make_pair("0xab"), make_pair("0xAB")])

        assert store.count() == 2


def test_conflicting_existing_schema_raises(tmp_path) -> None:
    path = tmp_path / "uniswapv2_pairs_1.db"
    conn = sqlite3.connect(path)
    conn.execute(f"CREATE TABLE {PAIRS_TABLE} (id TEXT PRIMARY KEY, price REAL)")
    conn.commit()
    conn.close()
    store = SqlitePairStore(path)

    with pytest.raises(SchemaError):
        store.initialize()
    store.close()


def test_quarantine_records_rejected_entities(tmp_path) -> None:
    with _store(tmp_path) as store:
        stored = store.quarantine([RejectedPair(id="0x09", error="bad txCount", payload="{}")])
        rows = store.connection.execute("SELECT id, error FROM rejected_pairs").fetchall()

    assert stored == 1
    assert rows == [("0x09", "bad txCount")]


def test_export_csv_writes_all_rows(tmp_path) -> None:
    destination = tmp_path / "export" / "pairs.csv"
    with _store(tmp_path) as store:
        store.append([make_pair("0x01"), make_pair("0x02")])
        exported = store.export_csv(destination)

    frame = pd.read_csv(destination)
    assert exported == 2
    assert list(frame["id"]) == ["0x01", "0x02"]
    assert list(frame.columns) == list(PAIRS_COLUMNS)


def test_export_csv_on_empty_store_writes_nothing(tmp_path) -> None:
    destination = tmp_path / "empty.csv"
    with _store(tmp_path) as store:
        assert store.export_csv(destination) == 0

    assert not destination.exists()
