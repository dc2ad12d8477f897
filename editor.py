from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Union

from budget_table import (
    Block,
    BudgetEntry,
    CategoryId,
    SortSpec,
    TableCategory,
    TableState,
    TableSubgroup,
    TableView,
    build_blocks,
    build_table_view,
    key_of,
    move_category,
    move_subgroup,
    reconcile_order,
    set_hidden,
    sort_categories,
    toggle_excluded,
    toggle_hidden,
)
from csv_utils import parse_amount
from errors import ConflictError, NetworkError, NotFoundError, ValidationError
from gateway import HttpSimulationGateway
from preferences import PreferenceStore, SimulationPreferences

logger = logging.getLogger(__name__)

AMOUNT_FIELDS = ("efectivo", "credito", "ahorro_efectivo", "ahorro_credito")
AHORRO_LIMITS = {"ahorro_efectivo": "efectivo", "ahorro_credito": "credito"}


@dataclass(frozen=True)
class SaveOutcome:
    saved: bool
    error: Optional[str] = None
    pending: tuple[str, ...] = ()


class SimulationEditor:
    """Client-side state for one simulation's budget table.

    Sub-group mutations go to the server first and only touch local state once
    the gateway call succeeded. Budget edits are kept locally and flagged as
    unsaved until a save goes through; a failed save leaves them in place for
    ``retry_save``.
    """

    def __init__(
        self,
        gateway: HttpSimulationGateway,
        simulation_id: int,
        store: Optional[PreferenceStore] = None,
    ) -> None:
        self.gateway = gateway
        self.simulation_id = simulation_id
        self.store = store
        self.categories: list[TableCategory] = []
        self.subgroups: list[TableSubgroup] = []
        self.entries: dict[str, BudgetEntry] = {}
        self.total_income = 0
        self.preferences = SimulationPreferences()
        self.unsaved: set[str] = set()
        self._requests_in_flight = 0
        self.adding_to: Optional[str] = None
        self._edit_seq: defaultdict[str, int] = defaultdict(int)

    @property
    def saving(self) -> bool:
        return self._requests_in_flight > 0

    def load(self) -> None:
        categories = self.gateway.categories()
        entries = self.gateway.simulation_budgets(self.simulation_id)
        incomes = self.gateway.incomes(self.simulation_id)
        subgroups = self.gateway.subgroups(self.simulation_id)

        self.categories = categories
        self.entries = entries
        self.subgroups = sorted(subgroups, key=lambda sg: sg.display_order)
        self.total_income = sum(int(i.get("amount_cents", 0)) for i in incomes)
        self.unsaved.clear()
        self.preferences = (
            self.store.load(self.simulation_id)
            if self.store is not None
            else SimulationPreferences()
        )
        self._prune_preferences()
        logger.info(
            f"simulation_loaded: simulation_id={self.simulation_id} "
            f"categories={len(categories)} subgroups={len(subgroups)}"
        )

    def _prune_preferences(self) -> None:
        prefs = self.preferences
        category_ids = {c.id for c in self.categories}
        subgroup_ids = {sg.id for sg in self.subgroups}
        known = category_ids | subgroup_ids
        prefs.category_order = [k for k in prefs.category_order if k in category_ids]
        prefs.subgroup_order = [k for k in prefs.subgroup_order if k in subgroup_ids]
        prefs.excluded = [k for k in prefs.excluded if k in category_ids]
        prefs.expanded = [k for k in prefs.expanded if k in subgroup_ids]
        prefs.hidden = {k: v for k, v in prefs.hidden.items() if k in known}

    def _persist_preferences(self) -> None:
        if self.store is not None:
            self.store.save(self.simulation_id, self.preferences)

    def _sort(self) -> SortSpec:
        prefs = self.preferences
        return SortSpec(
            by=prefs.sort_field,
            tipo_gasto_state=prefs.tipo_gasto_sort_state,
            direction=prefs.sort_direction,
        )

    def state(self) -> TableState:
        prefs = self.preferences
        return TableState(
            categories=list(self.categories),
            subgroups=list(self.subgroups),
            entries=dict(self.entries),
            total_income=self.total_income,
            category_order=list(prefs.category_order),
            subgroup_order=list(prefs.subgroup_order),
            hidden=dict(prefs.hidden),
            excluded=set(prefs.excluded),
            expanded=set(prefs.expanded),
            sort=self._sort(),
            hide_empty=prefs.hide_empty,
        )

    def view(self) -> TableView:
        return build_table_view(self.state())

    def _blocks(self) -> list[Block]:
        state = self.state()
        return build_blocks(
            state.categories,
            state.subgroups,
            category_order=state.category_order,
            subgroup_order=state.subgroup_order,
            excluded=state.excluded,
            sort=state.sort,
            entries=state.entries,
            hide_empty=state.hide_empty,
        )

    # Display preferences

    def set_sort(
        self,
        sort_field: Optional[str],
        tipo_gasto_state: int = 1,
        direction: str = "asc",
    ) -> None:
        if sort_field not in (None, "tipo_gasto", "name"):
            raise ValidationError(f"Unknown sort field: {sort_field}")
        if tipo_gasto_state not in (0, 1, 2):
            raise ValidationError("tipo_gasto sort state must be 0, 1 or 2")
        if direction not in ("asc", "desc"):
            raise ValidationError(f"Unknown sort direction: {direction}")
        self.preferences.sort_field = sort_field
        self.preferences.tipo_gasto_sort_state = tipo_gasto_state
        self.preferences.sort_direction = direction
        self._persist_preferences()

    def toggle_hidden(self, item_id: CategoryId) -> bool:
        self.preferences.hidden = toggle_hidden(self.preferences.hidden, item_id)
        self._persist_preferences()
        return self.preferences.hidden[key_of(item_id)]

    def set_hidden(self, item_ids: Iterable[CategoryId], flag: bool) -> None:
        self.preferences.hidden = set_hidden(self.preferences.hidden, item_ids, flag)
        self._persist_preferences()

    def toggle_excluded(self, category_id: CategoryId) -> bool:
        excluded = toggle_excluded(self.preferences.excluded, category_id)
        self.preferences.excluded = sorted(excluded)
        self._persist_preferences()
        return key_of(category_id) in excluded

    def toggle_expanded(self, subgroup_id: CategoryId) -> bool:
        key = key_of(subgroup_id)
        expanded = list(self.preferences.expanded)
        if key in expanded:
            expanded.remove(key)
        else:
            expanded.append(key)
        self.preferences.expanded = expanded
        self._persist_preferences()
        return key in expanded

    def set_hide_empty(self, flag: bool) -> None:
        self.preferences.hide_empty = flag
        self._persist_preferences()

    # Sub-group membership

    def _subgroup(self, subgroup_id: CategoryId) -> TableSubgroup:
        key = key_of(subgroup_id)
        for sg in self.subgroups:
            if sg.id == key:
                return sg
        raise NotFoundError("Sub-group not found")

    def owner_of(self, category_id: CategoryId) -> Optional[TableSubgroup]:
        key = key_of(category_id)
        for sg in self.subgroups:
            if key in sg.category_ids:
                return sg
        return None

    def uncategorized(self) -> list[TableCategory]:
        taken = {cid for sg in self.subgroups for cid in sg.category_ids}
        return [
            c
            for c in sort_categories(
                self.categories, self.preferences.category_order, self._sort()
            )
            if c.id not in taken
        ]

    def _check_categories(
        self, category_ids: list[str], allowed_owner: Optional[str] = None
    ) -> None:
        known = {c.id for c in self.categories}
        unknown = [cid for cid in category_ids if cid not in known]
        if unknown:
            raise ValidationError(f"Unknown category ids: {', '.join(unknown)}")
        taken = []
        for cid in category_ids:
            owner = self.owner_of(cid)
            if owner is not None and owner.id != allowed_owner:
                taken.append(cid)
        if taken:
            raise ConflictError(
                f"Categories already belong to another sub-group: {', '.join(taken)}"
            )

    def _call(self, fn, *args, **kwargs):
        self._requests_in_flight += 1
        try:
            return fn(*args, **kwargs)
        finally:
            self._requests_in_flight -= 1

    def _replace_subgroup(self, updated: TableSubgroup) -> None:
        self.subgroups = [updated if sg.id == updated.id else sg for sg in self.subgroups]

    def create_subgroup(
        self, name: str, category_ids: Iterable[CategoryId]
    ) -> TableSubgroup:
        clean = (name or "").strip()
        if not clean:
            raise ValidationError("Sub-group name cannot be empty")
        ids = list(dict.fromkeys(key_of(cid) for cid in category_ids))
        if not ids:
            raise ValidationError("Select at least one category for the sub-group")
        if any(sg.name.strip().casefold() == clean.casefold() for sg in self.subgroups):
            raise ConflictError(f'Sub-group "{clean}" already exists in this simulation')
        self._check_categories(ids)

        created = self._call(
            self.gateway.create_subgroup, self.simulation_id, clean, ids
        )
        self.subgroups = self.subgroups + [created]
        logger.info(
            f"subgroup_created: simulation_id={self.simulation_id} subgroup_id={created.id}"
        )
        return created

    def start_adding(self, subgroup_id: CategoryId) -> None:
        self.adding_to = self._subgroup(subgroup_id).id

    def cancel_adding(self) -> None:
        self.adding_to = None

    def add_categories_to_subgroup(
        self, subgroup_id: CategoryId, category_ids: Iterable[CategoryId]
    ) -> TableSubgroup:
        subgroup = self._subgroup(subgroup_id)
        ids = list(dict.fromkeys(key_of(cid) for cid in category_ids))
        self._check_categories(ids, allowed_owner=subgroup.id)
        merged = list(subgroup.category_ids) + [
            cid for cid in ids if cid not in subgroup.category_ids
        ]
        updated = self._call(
            self.gateway.update_subgroup,
            self.simulation_id,
            subgroup.id,
            category_ids=merged,
        )
        self._replace_subgroup(updated)
        self.adding_to = None
        return updated

    def remove_category_from_subgroup(self, category_id: CategoryId) -> TableSubgroup:
        key = key_of(category_id)
        owner = self.owner_of(key)
        if owner is None:
            raise ValidationError("Category does not belong to a sub-group")
        remaining = [cid for cid in owner.category_ids if cid != key]
        updated = self._call(
            self.gateway.update_subgroup,
            self.simulation_id,
            owner.id,
            category_ids=remaining,
        )
        self._replace_subgroup(updated)
        return updated

    def delete_subgroup(self, subgroup_id: CategoryId, confirmed: bool = False) -> None:
        subgroup = self._subgroup(subgroup_id)
        if not confirmed:
            raise ValidationError("Deleting a sub-group requires confirmation")
        self._call(self.gateway.delete_subgroup, self.simulation_id, subgroup.id)
        self.subgroups = [sg for sg in self.subgroups if sg.id != subgroup.id]
        if self.adding_to == subgroup.id:
            self.adding_to = None
        prefs = self.preferences
        prefs.subgroup_order = [k for k in prefs.subgroup_order if k != subgroup.id]
        prefs.expanded = [k for k in prefs.expanded if k != subgroup.id]
        prefs.hidden = {k: v for k, v in prefs.hidden.items() if k != subgroup.id}
        self._persist_preferences()
        logger.info(
            f"subgroup_deleted: simulation_id={self.simulation_id} subgroup_id={subgroup.id}"
        )

    # Ordering

    def move_category(self, dragged: CategoryId, target: CategoryId) -> list[str]:
        if self.preferences.sort_field == "name":
            raise ValidationError("Categories cannot be reordered while sorted by name")
        by_id = {c.id: c for c in self.categories}
        current = [
            c.id
            for c in sort_categories(
                self.categories, self.preferences.category_order, self._sort()
            )
        ]
        order = reconcile_order(self.preferences.category_order, current)
        source = by_id.get(key_of(dragged))
        destination = by_id.get(key_of(target))
        if source is None or destination is None:
            return order
        if source.tipo_gasto != destination.tipo_gasto:
            raise ValidationError(
                "Categories can only be reordered within the same tipo de gasto"
            )
        self.preferences.category_order = move_category(order, source.id, destination.id)
        self._persist_preferences()
        return self.preferences.category_order

    def move_subgroup(
        self,
        dragged: CategoryId,
        target: Optional[CategoryId],
        position: str = "before",
    ) -> list[str]:
        if self.adding_to is not None:
            raise ValidationError(
                "Finish adding categories before reordering sub-groups"
            )
        if self.saving:
            raise ValidationError("Cannot reorder sub-groups while a save is in progress")
        self._subgroup(dragged)

        # Only sub-group ids are stored; uncategorized rows keep their sort position.
        subgroup_ids = [sg.id for sg in self.subgroups]
        order = [k for k in self.preferences.subgroup_order if k in subgroup_ids]
        for key in [b.key for b in self._blocks() if b.subgroup is not None] + subgroup_ids:
            if key not in order:
                order.append(key)
        if target is not None and key_of(target) not in subgroup_ids:
            target = None
        self.preferences.subgroup_order = move_subgroup(order, dragged, target, position)
        self._persist_preferences()
        return self.preferences.subgroup_order

    # Budget amounts

    def commit_field(
        self, category_id: CategoryId, field: str, value: Union[int, str, bool]
    ) -> SaveOutcome:
        """Apply one edited field and save it, the way a blur would."""
        key = key_of(category_id)
        if key not in {c.id for c in self.categories}:
            raise NotFoundError("Category not found")
        entry = self.entries.get(key, BudgetEntry())

        if field == "needs_adjustment":
            if not isinstance(value, bool):
                raise ValidationError("needs_adjustment must be a boolean")
            updated = replace(entry, needs_adjustment=value)
        elif field in AMOUNT_FIELDS:
            cents = self._cents(value)
            updated = replace(entry, **{field: cents})
            for ahorro_field, base_field in AHORRO_LIMITS.items():
                if getattr(updated, ahorro_field) > getattr(updated, base_field):
                    raise ValidationError(
                        f"{ahorro_field} cannot exceed {base_field} for this category"
                    )
        else:
            raise ValidationError(f"Unknown budget field: {field}")

        self.entries[key] = updated
        self._edit_seq[key] += 1
        self.unsaved.add(key)
        return self._save([key])

    @staticmethod
    def _cents(value: Union[int, str, bool]) -> int:
        if isinstance(value, bool):
            raise ValidationError("Amount must be a number")
        if isinstance(value, str):
            try:
                return parse_amount(value)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
        if value < 0:
            raise ValidationError("Amount must be positive")
        return int(value)

    def retry_save(self) -> SaveOutcome:
        if not self.unsaved:
            return SaveOutcome(saved=True)
        return self._save(sorted(self.unsaved))

    def _save(self, keys: list[str]) -> SaveOutcome:
        snapshot = {k: self.entries[k] for k in keys}
        sent_seq = {k: self._edit_seq[k] for k in keys}
        self._requests_in_flight += 1
        try:
            self.gateway.save_simulation_budgets(self.simulation_id, snapshot)
        except NetworkError as exc:
            logger.warning(
                f"budget_save_failed: simulation_id={self.simulation_id} "
                f"categories={','.join(keys)} status={exc.status} error={exc}"
            )
            return SaveOutcome(
                saved=False, error=str(exc), pending=tuple(sorted(self.unsaved))
            )
        finally:
            self._requests_in_flight -= 1

        for k in keys:
            # Edited again while the request was out; that value still needs a save.
            if self._edit_seq[k] == sent_seq[k]:
                self.unsaved.discard(k)
        return SaveOutcome(saved=True, pending=tuple(sorted(self.unsaved)))
