import json

import pytest

import event_storage
from event_storage import (
    FileActivityStore,
    InMemoryActivityStore,
    StoreUnavailable,
    build_store,
    default_user_record,
    legacy_track_id,
    recent_activity,
    top_genres,
    user_id_from_fingerprint,
)


def test_unseen_user_gets_default_record(store):
    record = store.get("newbie")

    assert record["userId"] == "newbie"
    assert record["stats"] == {"played": 0, "liked": 0, "disliked": 0}
    assert record["userPreferences"] == {
        "plays": {}, "likes": [], "dislikes": [], "genreScores": {},
    }
    assert record["history"] == {"played": [], "liked": [], "skipped": []}
    assert record["lastUpdated"]


def test_default_record_is_not_persisted(tmp_path, clock):
    store = FileActivityStore(data_dir=tmp_path, clock=clock)
    store.get("ghost")
    assert not store.path_for("ghost").exists()

    memory = InMemoryActivityStore(clock=clock)
    memory.get("ghost")
    assert memory.records == {}


def test_counters_keep_growing_after_history_is_capped(store, track_a):
    for i in range(12):
        store.record_action("u1", "play", {**track_a, "n": i})

    record = store.get("u1")
    assert record["stats"]["played"] == 12
    assert len(record["history"]["played"]) == 5
    # Остаются самые новые записи в исходном порядке
    assert [entry["n"] for entry in record["history"]["played"]] == [7, 8, 9, 10, 11]


def test_cap_is_applied_to_every_category(store, track_a):
    liked = [{**track_a, "n": i} for i in range(8)]
    store.put("u1", {
        "stats": {"played": 0, "liked": 8, "disliked": 0},
        "history": {"played": [], "liked": liked, "skipped": []},
    })

    store.record_action("u1", "play", track_a)

    history = store.get("u1")["history"]
    assert [entry["n"] for entry in history["liked"]] == [3, 4, 5, 6, 7]
    assert len(history["played"]) == 1


def test_unknown_action_only_touches_last_updated(store, track_a):
    store.record_action("u1", "play", track_a)
    before = store.get("u1")

    store.record_action("u1", "dance", track_a)
    after = store.get("u1")

    assert after["stats"] == before["stats"]
    assert after["history"] == before["history"]
    assert after["lastUpdated"] > before["lastUpdated"]


def test_non_string_action_is_ignored(store, track_a):
    store.record_action("u1", ["play"], track_a)
    assert store.get("u1")["stats"] == {"played": 0, "liked": 0, "disliked": 0}


def test_skip_increments_disliked_counter(store, track_b):
    store.record_action("u1", "skip", track_b)

    record = store.get("u1")
    assert record["stats"] == {"played": 0, "liked": 0, "disliked": 1}
    assert len(record["history"]["skipped"]) == 1


def test_entry_snapshots_track_with_timestamp_and_legacy_id(store, track_a):
    store.record_action("u1", "like", track_a)

    entry = store.get("u1")["history"]["liked"][0]
    assert entry["id"] == "a1"
    assert entry["genre1"] == "classical"
    assert entry["trackId"] == "Gole Sangam_Shajarian"
    assert entry["timestamp"].endswith("Z")


def test_put_then_get_forces_user_id_and_last_updated(store):
    record = {
        "userId": "someone-else",
        "stats": {"played": 3, "liked": 1, "disliked": 0},
        "userPreferences": {
            "plays": {"x_y": 3}, "likes": ["x_y"], "dislikes": [],
            "genreScores": {"pop": 2.5},
        },
        "history": {"played": [{"title": "x", "singer": "y"}], "liked": [], "skipped": []},
        "lastUpdated": "1999-01-01T00:00:00.000Z",
        "extra": {"theme": "dark"},
    }

    store.put("u1", record)
    stored = store.get("u1")

    assert stored["userId"] == "u1"
    assert stored["lastUpdated"] != "1999-01-01T00:00:00.000Z"
    for key in ("stats", "userPreferences", "history", "extra"):
        assert stored[key] == record[key]


def test_put_is_full_replacement(store, track_a):
    store.record_action("u1", "play", track_a)
    store.put("u1", {"stats": {"played": 0, "liked": 0, "disliked": 0}})

    stored = store.get("u1")
    assert "history" not in stored
    assert store.list_history("u1") == {"played": [], "liked": [], "skipped": []}


def test_callers_receive_copies(clock, track_a):
    store = InMemoryActivityStore(clock=clock)
    store.record_action("u1", "play", track_a)

    record = store.get("u1")
    record["history"]["played"].clear()

    assert len(store.get("u1")["history"]["played"]) == 1


def test_three_action_scenario(store, track_a, track_b):
    """play A, like A, skip B -> по одному в каждой категории, новые первыми."""
    store.record_action("u1", "play", track_a)
    store.record_action("u1", "like", track_a)
    store.record_action("u1", "skip", track_b)

    stats = store.derive_stats("u1")

    assert stats["totalPlayed"] == 1
    assert stats["totalLiked"] == 1
    assert stats["totalSkipped"] == 1
    assert [item["action"] for item in stats["recentActivity"]] == ["skipped", "liked", "played"]
    assert [item["title"] for item in stats["recentActivity"]] == [
        "Soltane Ghalbha", "Gole Sangam", "Gole Sangam",
    ]


def test_recent_activity_is_limited_and_sorted(clock, track_a):
    store = InMemoryActivityStore(max_history=100, clock=clock)
    for i in range(30):
        store.record_action("u1", ("play", "like", "skip")[i % 3], {**track_a, "n": i})

    recent = store.derive_stats("u1")["recentActivity"]

    assert len(recent) == 20
    timestamps = [item["timestamp"] for item in recent]
    assert timestamps == sorted(timestamps, reverse=True)
    assert recent[0]["n"] == 29


def test_derive_stats_uses_current_history_not_counters(store, track_a):
    for _ in range(7):
        store.record_action("u1", "play", track_a)

    record = store.get("u1")
    stats = store.derive_stats("u1")

    assert record["stats"]["played"] == 7
    assert stats["totalPlayed"] == 5


def test_list_history_returns_raw_sequences(store, track_a, track_b):
    store.record_action("u1", "play", track_a)
    store.record_action("u1", "skip", track_b)

    lists = store.list_history("u1")

    assert set(lists) == {"played", "liked", "skipped"}
    assert lists["played"][0]["title"] == "Gole Sangam"
    assert lists["liked"] == []
    assert "action" not in lists["skipped"][0]


def test_top_genres_orders_by_score_with_stable_ties():
    scores = {"pop": 3, "rock": 5, "jazz": 3, "folk": 1, "rap": 5, "edm": 0, "blues": 2}

    assert top_genres(scores) == [
        {"genre": "rock", "score": 5},
        {"genre": "rap", "score": 5},
        {"genre": "pop", "score": 3},
        {"genre": "jazz", "score": 3},
        {"genre": "blues", "score": 2},
    ]
    assert top_genres({}) == []


def test_recent_activity_puts_entries_without_timestamp_last():
    history = {
        "played": [{"title": "old", "timestamp": "2024-01-01T00:00:00.000Z"}],
        "liked": [{"title": "broken"}],
        "skipped": [{"title": "new", "timestamp": "2024-02-01T00:00:00.000Z"}],
    }

    assert [item["title"] for item in recent_activity(history)] == ["new", "old", "broken"]
    assert recent_activity({}) == []


def test_legacy_track_id_collides_for_same_title_and_singer():
    first = {"id": 1, "title": "Bahar", "singer": "Homayoun"}
    second = {"id": 2, "title": "Bahar", "singer": "Homayoun"}
    assert legacy_track_id(first) == legacy_track_id(second) == "Bahar_Homayoun"


def test_file_store_writes_pretty_json_per_user(tmp_path, clock):
    store = FileActivityStore(data_dir=tmp_path, clock=clock)
    store.record_action("u1", "play", {"title": "Morgh-e Sahar", "singer": "بنان"})

    path = tmp_path / "u1.json"
    text = path.read_text(encoding="utf-8")

    assert text.startswith("{\n  \"userId\": \"u1\"")
    assert "بنان" in text
    assert json.loads(text)["stats"]["played"] == 1


def test_file_store_corrupt_file_is_unavailable(tmp_path, clock):
    store = FileActivityStore(data_dir=tmp_path, clock=clock)
    (tmp_path / "u1.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreUnavailable):
        store.get("u1")


def test_file_store_missing_directory_is_unavailable(tmp_path, clock, track_a):
    store = FileActivityStore(data_dir=tmp_path / "missing", clock=clock)

    with pytest.raises(StoreUnavailable):
        store.record_action("u1", "play", track_a)

    store.ensure_data_dir()
    store.record_action("u1", "play", track_a)
    assert store.get("u1")["stats"]["played"] == 1


def test_user_id_from_fingerprint():
    user_id = user_id_from_fingerprint("browser-fingerprint")

    assert user_id == user_id_from_fingerprint("browser-fingerprint")
    assert len(user_id) == 16
    int(user_id, 16)
    assert len(user_id_from_fingerprint()) == 16


def test_build_store_backends(tmp_path):
    assert isinstance(build_store("memory"), InMemoryActivityStore)

    file_store = build_store("file", data_dir=tmp_path, max_history=7)
    assert isinstance(file_store, FileActivityStore)
    assert file_store.max_history == 7

    with pytest.raises(ValueError):
        build_store("redis")


def test_default_limit_comes_from_settings(monkeypatch):
    monkeypatch.setattr(event_storage.settings, "MAX_HISTORY_PER_CATEGORY", 500)
    assert InMemoryActivityStore().max_history == 500


def test_default_user_record_uses_given_timestamp():
    record = default_user_record("u1", "2024-01-01T00:00:00.000000Z")
    assert record["lastUpdated"] == "2024-01-01T00:00:00.000000Z"


@pytest.mark.parametrize("limit", [0, -1])
def test_history_limit_below_one_is_rejected(limit):
    with pytest.raises(ValueError):
        InMemoryActivityStore(max_history=limit)


def test_zero_limit_from_settings_is_rejected(monkeypatch):
    monkeypatch.setattr(event_storage.settings, "MAX_HISTORY_PER_CATEGORY", 0)
    with pytest.raises(ValueError):
        build_store("memory")


def test_history_limit_of_one_keeps_latest_entry(clock, track_a):
    store = InMemoryActivityStore(max_history=1, clock=clock)
    for i in range(3):
        store.record_action("u1", "play", {**track_a, "n": i})

    record = store.get("u1")
    assert [entry["n"] for entry in record["history"]["played"]] == [2]
    assert record["stats"]["played"] == 3
