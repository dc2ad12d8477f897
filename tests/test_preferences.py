import json
from datetime import datetime, timedelta, timezone

from preferences import PreferenceStore, SimulationPreferences
from scheduler import SchedulerManager


def _clock(start: datetime):
    current = {"now": start}

    def now() -> datetime:
        return current["now"]

    return current, now


def test_save_and_load_round_trip(tmp_path) -> None:
    store = PreferenceStore(directory=tmp_path, max_age_days=30)
    prefs = SimulationPreferences(
        category_order=["3", "1"],
        subgroup_order=["sg-1", "2"],
        excluded=["4"],
        hidden={"sg-1": True, "1": False},
        expanded=["sg-1"],
        sort_field="tipo_gasto",
        tipo_gasto_sort_state=2,
        hide_empty=True,
    )

    store.save(12, prefs)

    assert store.load(12) == prefs
    assert store.load(13) == SimulationPreferences()
    payload = json.loads((tmp_path / "simulation_12.json").read_text())
    assert payload["version"] == 1


def test_corrupt_file_is_reset_to_defaults(tmp_path, caplog) -> None:
    store = PreferenceStore(directory=tmp_path)
    path = tmp_path / "simulation_5.json"
    path.write_text("{not json")

    with caplog.at_level("WARNING"):
        prefs = store.load(5)

    assert prefs == SimulationPreferences()
    assert not path.exists()
    assert "preferences_reset: simulation_id=5" in caplog.text


def test_wrong_version_and_bad_values_are_rejected(tmp_path) -> None:
    store = PreferenceStore(directory=tmp_path)
    saved_at = datetime.now(timezone.utc).isoformat()
    (tmp_path / "simulation_1.json").write_text(
        json.dumps({"version": 99, "saved_at": saved_at, "preferences": {}})
    )
    (tmp_path / "simulation_2.json").write_text(
        json.dumps(
            {
                "version": 1,
                "saved_at": saved_at,
                "preferences": {"hidden": {"7": "yes"}},
            }
        )
    )

    assert store.load(1) == SimulationPreferences()
    assert store.load(2) == SimulationPreferences()
    assert list(tmp_path.iterdir()) == []


def test_expired_entries_are_ignored_and_pruned(tmp_path) -> None:
    current, now = _clock(datetime(2026, 1, 1, tzinfo=timezone.utc))
    store = PreferenceStore(directory=tmp_path, max_age_days=30, now=now)
    store.save(1, SimulationPreferences(expanded=["sg"]))
    current["now"] += timedelta(days=20)
    store.save(2, SimulationPreferences(excluded=["9"]))
    (tmp_path / "simulation_3.json").write_text("garbage")

    current["now"] += timedelta(days=15)

    assert store.prune() == 2
    assert sorted(p.name for p in tmp_path.iterdir()) == ["simulation_2.json"]
    assert store.load(2).excluded == ["9"]

    current["now"] += timedelta(days=31)
    assert store.load(2) == SimulationPreferences()


def test_clear_is_idempotent(tmp_path) -> None:
    store = PreferenceStore(directory=tmp_path)
    store.save(4, SimulationPreferences())

    store.clear(4)
    store.clear(4)

    assert store.load(4) == SimulationPreferences()


def test_scheduler_job_prunes_the_store(tmp_path, caplog) -> None:
    current, now = _clock(datetime(2026, 1, 1, tzinfo=timezone.utc))
    store = PreferenceStore(directory=tmp_path, max_age_days=1, now=now)
    store.save(1, SimulationPreferences())
    current["now"] += timedelta(days=2)
    manager = SchedulerManager(store=store)

    with caplog.at_level("INFO"):
        removed = manager._run_job("test")

    assert removed == 1
    assert "preferences_pruned: source=test removed=1" in caplog.text
    assert manager.scheduler.running is False
