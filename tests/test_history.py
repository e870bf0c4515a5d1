# tests/test_history.py
"""
Tests for the recommendation history file.
"""
import json

import pytest

from printadvisor.history import HistoryEntry, HistoryStore, format_history


@pytest.fixture
def store(tmp_path):
    return HistoryStore(tmp_path / "nested" / "history.json")


class TestHistoryStore:
    """Test append/load and tolerance of broken files."""

    def test_missing_file_is_empty(self, store):
        assert store.load() == []

    def test_append_and_load(self, store):
        entry = store.append("part.obj", {"Filament": "PLA", "Confidence": "42.00"})

        assert entry is not None
        loaded = store.load()
        assert loaded == [entry]
        assert loaded[0].file_name == "part.obj"
        assert loaded[0].results["Filament"] == "PLA"

    def test_entries_accumulate_in_order(self, store):
        store.append("a.obj", {})
        store.append("b.obj", {})
        assert [e.file_name for e in store.load()] == ["a.obj", "b.obj"]

    def test_file_format(self, store):
        store.append("part.obj", {"Nozzle": "0.4"})
        data = json.loads(store.path.read_text(encoding="utf-8"))

        assert data[0]["fileName"] == "part.obj"
        assert data[0]["results"] == {"Nozzle": "0.4"}
        assert len(data[0]["timestamp"]) == len("2024-01-01 00:00:00")

    def test_corrupt_file_is_ignored(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{not json", encoding="utf-8")

        assert store.load() == []
        store.append("part.obj", {})
        assert len(store.load()) == 1

    def test_non_list_file_is_ignored(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text('{"fileName": "x"}', encoding="utf-8")
        assert store.load() == []

    def test_malformed_entries_skipped(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text(
            json.dumps(
                [
                    {"timestamp": "2024-01-01 10:00:00", "fileName": "ok.obj"},
                    {"timestamp": "2024-01-01 10:00:00"},
                    "garbage",
                ]
            ),
            encoding="utf-8",
        )

        entries = store.load()
        assert [e.file_name for e in entries] == ["ok.obj"]
        assert entries[0].results == {}

    def test_unwritable_location_returns_none(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = HistoryStore(blocker / "history.json")

        assert store.append("part.obj", {}) is None


class TestHistoryEntry:
    def test_dict_round_trip(self):
        entry = HistoryEntry("2024-01-01 10:00:00", "part.obj", {"Filament": "PETG"})
        assert HistoryEntry.from_dict(entry.to_dict()) == entry


class TestFormatHistory:
    def test_empty(self):
        assert format_history([]) == "History is empty."

    def test_entries(self):
        entries = [
            HistoryEntry("2024-01-01 10:00:00", "gear.obj", {"Filament": "PETG", "Detail": "true"}),
            HistoryEntry("2024-01-02 09:30:00", "vase.obj", {}),
        ]

        assert format_history(entries).splitlines() == [
            "2024-01-01 10:00:00 - gear.obj",
            "  Filament: PETG",
            "  Detail: true",
            "",
            "2024-01-02 09:30:00 - vase.obj",
            "",
        ]
