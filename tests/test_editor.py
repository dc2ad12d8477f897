from dataclasses import replace

import pytest

from budget_table import BudgetEntry, TableCategory, TableSubgroup
from editor import SaveOutcome, SimulationEditor
from errors import ConflictError, NetworkError, NotFoundError, ValidationError
from models import TipoGasto
from preferences import PreferenceStore


class FakeGateway:
    """In-memory stand-in for the HTTP gateway."""

    def __init__(self) -> None:
        self.categories_data = [
            TableCategory(1, "A", TipoGasto.fijo),
            TableCategory(2, "B", TipoGasto.variable),
            TableCategory(3, "C"),
            TableCategory(4, "D", TipoGasto.fijo),
        ]
        self.subgroups_data = [TableSubgroup("sg-1", "Utilities", (3,), 0)]
        self.budgets = {
            "1": BudgetEntry(efectivo=10_000, ahorro_efectivo=2_000),
            "2": BudgetEntry(efectivo=5_000),
            "3": BudgetEntry(efectivo=3_000, ahorro_efectivo=1_000),
        }
        self.saved: list[dict[str, BudgetEntry]] = []
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self.during_call = None
        self._next_id = 2

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.during_call is not None:
            hook, self.during_call = self.during_call, None
            hook()
        if name in self.fail_on:
            raise NetworkError(f"{name} failed: connection refused")

    def categories(self):
        return list(self.categories_data)

    def simulation_budgets(self, simulation_id):
        return dict(self.budgets)

    def save_simulation_budgets(self, simulation_id, entries):
        self._enter("save_simulation_budgets")
        self.saved.append(dict(entries))
        self.budgets.update(entries)

    def incomes(self, simulation_id):
        return [{"id": 1, "description": "Salary", "amount_cents": 50_000}]

    def subgroups(self, simulation_id):
        return list(self.subgroups_data)

    def create_subgroup(self, simulation_id, name, category_ids):
        self._enter("create_subgroup")
        created = TableSubgroup(
            f"sg-{self._next_id}", name, tuple(category_ids), len(self.subgroups_data)
        )
        self._next_id += 1
        self.subgroups_data.append(created)
        return created

    def update_subgroup(self, simulation_id, subgroup_id, *, category_ids=None, **_):
        self._enter("update_subgroup")
        for index, sg in enumerate(self.subgroups_data):
            if sg.id == subgroup_id:
                updated = replace(sg, category_ids=tuple(category_ids))
                self.subgroups_data[index] = updated
                return updated
        raise NetworkError("Sub-group not found", status=404)

    def delete_subgroup(self, simulation_id, subgroup_id):
        self._enter("delete_subgroup")
        self.subgroups_data = [sg for sg in self.subgroups_data if sg.id != subgroup_id]


def _editor(tmp_path=None) -> tuple[SimulationEditor, FakeGateway]:
    gateway = FakeGateway()
    store = PreferenceStore(directory=tmp_path) if tmp_path is not None else None
    editor = SimulationEditor(gateway, simulation_id=7, store=store)
    editor.load()
    return editor, gateway


def test_load_builds_the_worked_example_view() -> None:
    editor, _ = _editor()

    view = editor.view()

    assert editor.total_income == 50_000
    assert view.balances == {"1": 42_000, "2": 37_000, "3": 35_000, "4": 35_000}
    assert view.subgroup_balances == {"sg-1": 35_000}


def test_create_subgroup_validates_before_calling_the_server() -> None:
    editor, gateway = _editor()

    with pytest.raises(ValidationError, match="Select at least one category"):
        editor.create_subgroup("Home", [])
    with pytest.raises(ValidationError, match="name cannot be empty"):
        editor.create_subgroup("  ", [1])
    with pytest.raises(ConflictError, match="already exists"):
        editor.create_subgroup(" utilities ", [1])
    with pytest.raises(ConflictError, match="already belong to another sub-group: 3"):
        editor.create_subgroup("Home", [1, 3])

    assert gateway.calls == []
    assert [sg.id for sg in editor.subgroups] == ["sg-1"]


def test_create_subgroup_appends_after_server_accepts() -> None:
    editor, _ = _editor()

    created = editor.create_subgroup("Home", [1, "4", 1])

    assert created.category_ids == ("1", "4")
    assert [sg.name for sg in editor.subgroups] == ["Utilities", "Home"]
    assert editor.owner_of(4) is created
    assert [c.id for c in editor.uncategorized()] == ["2"]


def test_failed_create_leaves_state_unchanged() -> None:
    editor, gateway = _editor()
    gateway.fail_on.add("create_subgroup")

    with pytest.raises(NetworkError, match="connection refused"):
        editor.create_subgroup("Home", [1])

    assert [sg.id for sg in editor.subgroups] == ["sg-1"]
    assert editor.saving is False


def test_add_and_remove_categories() -> None:
    editor, _ = _editor()
    editor.start_adding("sg-1")

    updated = editor.add_categories_to_subgroup("sg-1", [2, 3])

    assert updated.category_ids == ("3", "2")
    assert editor.adding_to is None

    home = editor.create_subgroup("Home", [1])
    with pytest.raises(ConflictError, match="already belong"):
        editor.add_categories_to_subgroup(home.id, [2])

    emptied = editor.remove_category_from_subgroup(1)
    assert emptied.category_ids == ()
    assert editor.owner_of(1) is None
    assert [c.id for c in editor.categories] == ["1", "2", "3", "4"]

    with pytest.raises(ValidationError, match="does not belong to a sub-group"):
        editor.remove_category_from_subgroup(4)


def test_delete_subgroup_requires_confirmation_and_cleans_preferences(tmp_path) -> None:
    editor, gateway = _editor(tmp_path)
    editor.toggle_expanded("sg-1")
    editor.toggle_hidden("sg-1")
    editor.move_subgroup("sg-1", None)

    with pytest.raises(ValidationError, match="requires confirmation"):
        editor.delete_subgroup("sg-1")
    assert "delete_subgroup" not in gateway.calls

    editor.delete_subgroup("sg-1", confirmed=True)

    assert editor.subgroups == []
    assert editor.owner_of(3) is None
    stored = PreferenceStore(directory=tmp_path).load(7)
    assert "sg-1" not in stored.subgroup_order
    assert stored.expanded == []
    assert stored.hidden == {}
    with pytest.raises(NotFoundError, match="Sub-group not found"):
        editor.delete_subgroup("sg-1", confirmed=True)


def test_move_category_only_within_the_same_tipo_gasto(tmp_path) -> None:
    editor, _ = _editor(tmp_path)

    with pytest.raises(ValidationError, match="same tipo de gasto"):
        editor.move_category(1, 2)
    assert editor.preferences.category_order == []

    order = editor.move_category(4, 1)

    assert order == ["4", "1", "2", "3"]
    assert PreferenceStore(directory=tmp_path).load(7).category_order == order
    assert editor.move_category(4, 4) == order


def test_move_subgroup_is_blocked_while_adding_or_saving() -> None:
    editor, gateway = _editor()
    editor.start_adding("sg-1")

    with pytest.raises(ValidationError, match="Finish adding categories"):
        editor.move_subgroup("sg-1", "1")

    editor.cancel_adding()
    blocked = []

    def try_drag() -> None:
        try:
            editor.move_subgroup("sg-1", "1")
        except ValidationError as exc:
            blocked.append(str(exc))

    gateway.during_call = try_drag
    editor.commit_field(1, "credito", 100)

    assert blocked == ["Cannot reorder sub-groups while a save is in progress"]
    assert editor.move_subgroup("sg-1", "1") == ["sg-1"]


def _row_ids(editor: SimulationEditor) -> list[str]:
    return [row.id for row in editor.view().rows if row.kind != "subtotal"]


def test_sort_still_applies_to_uncategorized_rows_after_subgroup_drag(tmp_path) -> None:
    editor, gateway = _editor(tmp_path)
    prefs = editor.preferences
    prefs.subgroup_order = ["1", "sg-1", "2"]
    editor.store.save(7, prefs)

    reloaded = SimulationEditor(gateway, 7, store=PreferenceStore(directory=tmp_path))
    reloaded.load()
    assert reloaded.preferences.subgroup_order == ["sg-1"]

    assert reloaded.move_subgroup("sg-1", None) == ["sg-1"]
    assert _row_ids(reloaded) == ["sg-1", "1", "2", "4"]

    reloaded.set_sort("tipo_gasto", tipo_gasto_state=2)

    assert _row_ids(reloaded) == ["sg-1", "2", "1", "4"]


def test_category_drag_after_subgroup_drag_moves_the_row() -> None:
    editor, _ = _editor()
    editor.move_subgroup("sg-1", None)

    assert editor.move_category(4, 1) == ["4", "1", "2", "3"]
    assert _row_ids(editor) == ["sg-1", "4", "1", "2"]
    assert editor.preferences.subgroup_order == ["sg-1"]


def test_category_drag_is_rejected_while_sorted_by_name() -> None:
    editor, _ = _editor()
    editor.set_sort("name")

    with pytest.raises(ValidationError, match="sorted by name"):
        editor.move_category(4, 1)
    assert editor.preferences.category_order == []


def test_nested_save_keeps_the_drag_lock_until_the_outer_request_ends() -> None:
    editor, gateway = _editor()
    blocked = []

    def edit_then_drag() -> None:
        editor.commit_field(2, "credito", 100)
        try:
            editor.move_subgroup("sg-1", None)
        except ValidationError as exc:
            blocked.append(str(exc))

    gateway.during_call = edit_then_drag
    editor.commit_field(1, "credito", 500)

    assert blocked == ["Cannot reorder sub-groups while a save is in progress"]
    assert editor.saving is False
    assert editor.move_subgroup("sg-1", None) == ["sg-1"]


def test_failed_save_keeps_edit_pending_until_retry() -> None:
    editor, gateway = _editor()
    gateway.fail_on.add("save_simulation_budgets")

    outcome = editor.commit_field(2, "efectivo", "6.000,50")

    assert outcome == SaveOutcome(
        saved=False,
        error="save_simulation_budgets failed: connection refused",
        pending=("2",),
    )
    assert editor.entries["2"].efectivo == 600_050
    assert editor.unsaved == {"2"}
    assert editor.view().balances["2"] == 42_000 - 600_050

    gateway.fail_on.clear()
    retried = editor.retry_save()

    assert retried == SaveOutcome(saved=True)
    assert editor.unsaved == set()
    assert gateway.budgets["2"].efectivo == 600_050
    assert editor.retry_save() == SaveOutcome(saved=True)


def test_edit_during_inflight_save_stays_unsaved() -> None:
    editor, gateway = _editor()

    def edit_again() -> None:
        gateway.fail_on.add("save_simulation_budgets")
        editor.commit_field(1, "credito", 700)
        gateway.fail_on.clear()

    gateway.during_call = edit_again
    outcome = editor.commit_field(1, "credito", 500)

    assert outcome.saved is True
    assert outcome.pending == ("1",)
    assert editor.entries["1"].credito == 700

    editor.retry_save()
    assert gateway.budgets["1"].credito == 700
    assert editor.unsaved == set()


def test_commit_field_rejects_bad_values_without_touching_entries() -> None:
    editor, gateway = _editor()
    before = dict(editor.entries)

    with pytest.raises(ValidationError, match="cannot exceed efectivo"):
        editor.commit_field(1, "ahorro_efectivo", 20_000)
    with pytest.raises(ValidationError, match="ahorro_efectivo cannot exceed efectivo"):
        editor.commit_field(1, "efectivo", 500)
    with pytest.raises(ValidationError, match="Amount must be positive"):
        editor.commit_field(1, "credito", -5)
    with pytest.raises(ValidationError, match="Unknown budget field"):
        editor.commit_field(1, "balance", 5)
    with pytest.raises(NotFoundError, match="Category not found"):
        editor.commit_field(99, "credito", 5)

    assert editor.entries == before
    assert gateway.saved == []


def test_display_preferences_survive_reload(tmp_path) -> None:
    editor, gateway = _editor(tmp_path)
    editor.set_sort("tipo_gasto", tipo_gasto_state=2)
    assert editor.toggle_excluded(2) is True
    editor.set_hidden([1, 4], True)

    reloaded = SimulationEditor(gateway, 7, store=PreferenceStore(directory=tmp_path))
    reloaded.load()

    assert reloaded.preferences.sort_field == "tipo_gasto"
    assert reloaded.preferences.tipo_gasto_sort_state == 2
    assert reloaded.preferences.excluded == ["2"]
    assert reloaded.view().totals.final_balance == 48_000

    with pytest.raises(ValidationError, match="Unknown sort field"):
        reloaded.set_sort("amount")
