"""Row organization and running balances for the simulation budget table.

Everything in here is a pure function over plain dataclasses. Identifiers are
normalized to strings with ``key_of`` before they are used as mapping keys, so
``1`` and ``"1"`` always refer to the same category.
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union

from models import TipoGasto

CategoryId = Union[int, str]

TIPO_GASTO_RANKS: dict[int, dict[TipoGasto, int]] = {
    1: {
        TipoGasto.fijo: 1,
        TipoGasto.semi_fijo: 2,
        TipoGasto.variable: 3,
        TipoGasto.eventual: 4,
    },
    2: {
        TipoGasto.variable: 1,
        TipoGasto.semi_fijo: 2,
        TipoGasto.fijo: 3,
        TipoGasto.eventual: 4,
    },
}
UNRANKED_TIPO_GASTO = 5


def key_of(value: CategoryId) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise TypeError(f"Unsupported identifier type: {type(value).__name__}")
    key = str(value).strip()
    if not key:
        raise ValueError("Identifier cannot be empty")
    return key


def _keys(values: Iterable[CategoryId]) -> list[str]:
    return list(dict.fromkeys(key_of(v) for v in values))


@dataclass(frozen=True)
class TableCategory:
    id: str
    name: str
    tipo_gasto: Optional[TipoGasto] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", key_of(self.id))
        if self.tipo_gasto is not None:
            object.__setattr__(self, "tipo_gasto", TipoGasto(self.tipo_gasto))


@dataclass(frozen=True)
class TableSubgroup:
    id: str
    name: str
    category_ids: tuple[str, ...] = ()
    display_order: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", key_of(self.id))
        object.__setattr__(self, "category_ids", tuple(_keys(self.category_ids)))


@dataclass(frozen=True)
class BudgetEntry:
    efectivo: int = 0
    credito: int = 0
    ahorro_efectivo: int = 0
    ahorro_credito: int = 0
    needs_adjustment: bool = False

    @property
    def net_spend(self) -> int:
        return self.efectivo - self.ahorro_efectivo

    @property
    def total(self) -> int:
        return (
            self.efectivo + self.credito - self.ahorro_efectivo - self.ahorro_credito
        )

    @property
    def is_empty(self) -> bool:
        return self.efectivo == 0 and self.credito == 0


@dataclass(frozen=True)
class Subtotal:
    efectivo: int = 0
    credito: int = 0
    ahorro_efectivo: int = 0
    ahorro_credito: int = 0

    @property
    def net_spend(self) -> int:
        return self.efectivo - self.ahorro_efectivo

    @property
    def total(self) -> int:
        return (
            self.efectivo + self.credito - self.ahorro_efectivo - self.ahorro_credito
        )

    def add(self, entry: BudgetEntry) -> "Subtotal":
        return Subtotal(
            efectivo=self.efectivo + entry.efectivo,
            credito=self.credito + entry.credito,
            ahorro_efectivo=self.ahorro_efectivo + entry.ahorro_efectivo,
            ahorro_credito=self.ahorro_credito + entry.ahorro_credito,
        )


@dataclass(frozen=True)
class Totals:
    efectivo: int
    credito: int
    ahorro_efectivo: int
    ahorro_credito: int
    net_spend: int
    total: int
    total_income: int
    final_balance: int


@dataclass(frozen=True)
class SortSpec:
    by: Optional[str] = None  # "tipo_gasto" | "name"
    tipo_gasto_state: int = 1
    direction: str = "asc"


DEFAULT_SORT = SortSpec()


@dataclass(frozen=True)
class Block:
    subgroup: Optional[TableSubgroup]
    categories: tuple[TableCategory, ...]

    @property
    def key(self) -> str:
        if self.subgroup is not None:
            return self.subgroup.id
        return self.categories[0].id


@dataclass(frozen=True)
class Row:
    kind: str  # "header" | "category" | "subtotal"
    id: str
    subgroup_id: Optional[str] = None


@dataclass(frozen=True)
class Balances:
    categories: dict[str, int]
    subgroups: dict[str, int]


@dataclass
class TableState:
    categories: list[TableCategory]
    subgroups: list[TableSubgroup] = field(default_factory=list)
    entries: dict[str, BudgetEntry] = field(default_factory=dict)
    total_income: int = 0
    category_order: list[str] = field(default_factory=list)
    subgroup_order: list[str] = field(default_factory=list)
    hidden: dict[str, bool] = field(default_factory=dict)
    excluded: set[str] = field(default_factory=set)
    expanded: set[str] = field(default_factory=set)
    sort: SortSpec = DEFAULT_SORT
    hide_empty: bool = False


@dataclass(frozen=True)
class SubgroupHeader:
    name: str
    member_count: int
    visible_count: int
    hidden: bool


@dataclass(frozen=True)
class TableView:
    rows: list[Row]
    balances: dict[str, int]
    subgroup_balances: dict[str, int]
    subtotals: dict[str, Subtotal]
    headers: dict[str, SubgroupHeader]
    totals: Totals


def reconcile_order(
    stored: Iterable[CategoryId], current: Iterable[CategoryId]
) -> list[str]:
    """Drop ids that no longer exist and append new ones in ``current`` order."""
    current_keys = _keys(current)
    known = set(current_keys)
    kept = [k for k in _keys(stored) if k in known]
    seen = set(kept)
    return kept + [k for k in current_keys if k not in seen]


def sort_categories(
    categories: Iterable[TableCategory],
    category_order: Iterable[CategoryId] = (),
    sort: SortSpec = DEFAULT_SORT,
) -> list[TableCategory]:
    def by_name(cat: TableCategory) -> tuple[str, str]:
        return (cat.name.casefold(), cat.id)

    if sort.by == "name":
        return sorted(categories, key=by_name, reverse=sort.direction == "desc")

    alphabetical = sorted(categories, key=by_name)
    positions = {k: i for i, k in enumerate(_keys(category_order))}
    unordered = len(positions)

    def position(cat: TableCategory) -> int:
        return positions.get(cat.id, unordered)

    ranks = TIPO_GASTO_RANKS.get(sort.tipo_gasto_state)
    if sort.by == "tipo_gasto" and ranks is not None:
        return sorted(
            alphabetical,
            key=lambda c: (ranks.get(c.tipo_gasto, UNRANKED_TIPO_GASTO), position(c)),
        )
    return sorted(alphabetical, key=position)


def filter_categories(
    categories: Iterable[TableCategory],
    excluded: Iterable[CategoryId] = (),
    entries: Optional[Mapping[str, BudgetEntry]] = None,
    hide_empty: bool = False,
) -> list[TableCategory]:
    excluded_keys = set(_keys(excluded))
    entries = entries or {}
    result = []
    for cat in categories:
        if cat.id in excluded_keys:
            continue
        if hide_empty and entries.get(cat.id, BudgetEntry()).is_empty:
            continue
        result.append(cat)
    return result


def build_blocks(
    categories: Iterable[TableCategory],
    subgroups: Iterable[TableSubgroup],
    *,
    category_order: Iterable[CategoryId] = (),
    subgroup_order: Iterable[CategoryId] = (),
    excluded: Iterable[CategoryId] = (),
    sort: SortSpec = DEFAULT_SORT,
    entries: Optional[Mapping[str, BudgetEntry]] = None,
    hide_empty: bool = False,
) -> list[Block]:
    """Group the sorted categories into sub-group and uncategorized blocks.

    Blocks named in ``subgroup_order`` come first, in that order. Everything
    else follows in its natural position: a sub-group sits where its first
    member falls in the base sort, an uncategorized category where it falls
    itself, and sub-groups without members go last by ``display_order``.

    A sub-group whose members are all filtered out is dropped. One that has
    no members at all is kept so categories can still be added to it.
    """
    categories = list(categories)
    subgroups = list(subgroups)
    known = {c.id for c in categories}
    ordered = filter_categories(
        sort_categories(categories, category_order, sort),
        excluded,
        entries,
        hide_empty,
    )
    rank = {c.id: i for i, c in enumerate(ordered)}
    by_id = {c.id: c for c in ordered}

    owner: dict[str, str] = {}
    for sg in subgroups:
        for cid in sg.category_ids:
            owner.setdefault(cid, sg.id)

    pending: dict[tuple[str, str], Block] = {}
    natural: dict[tuple[str, str], tuple[int, int, str]] = {}
    for sg in subgroups:
        members = sorted(
            (cid for cid in sg.category_ids if cid in rank and owner[cid] == sg.id),
            key=rank.__getitem__,
        )
        if not members and any(cid in known for cid in sg.category_ids):
            continue
        slot = ("subgroup", sg.id)
        pending[slot] = Block(sg, tuple(by_id[cid] for cid in members))
        if members:
            natural[slot] = (rank[members[0]], 0, "")
        else:
            natural[slot] = (len(rank), sg.display_order, sg.name.casefold())

    for cat in ordered:
        if cat.id in owner:
            continue
        slot = ("category", cat.id)
        pending[slot] = Block(None, (cat,))
        natural[slot] = (rank[cat.id], 0, "")

    blocks = []
    for key in _keys(subgroup_order):
        for kind in ("subgroup", "category"):
            block = pending.pop((kind, key), None)
            if block is not None:
                blocks.append(block)
                break
    blocks.extend(pending[slot] for slot in sorted(pending, key=natural.__getitem__))
    return blocks


def organize_rows(blocks: Iterable[Block], expanded: Iterable[str] = ()) -> list[Row]:
    expanded_keys = set(_keys(expanded))
    rows = []
    for block in blocks:
        if block.subgroup is None:
            rows.append(Row("category", block.categories[0].id))
            continue
        sg_id = block.subgroup.id
        rows.append(Row("header", sg_id, sg_id))
        if sg_id in expanded_keys:
            rows.extend(Row("category", c.id, sg_id) for c in block.categories)
        rows.append(Row("subtotal", sg_id, sg_id))
    return rows


def traversal_order(blocks: Iterable[Block]) -> list[tuple[Optional[str], Optional[str]]]:
    """Return ``(category_id, subgroup_id)`` pairs in display order.

    Collapsed sub-groups are walked too. A sub-group without members shows
    up once as ``(None, subgroup_id)`` so it still gets a balance.
    """
    order: list[tuple[Optional[str], Optional[str]]] = []
    for block in blocks:
        sg_id = block.subgroup.id if block.subgroup is not None else None
        if sg_id is not None and not block.categories:
            order.append((None, sg_id))
        order.extend((c.id, sg_id) for c in block.categories)
    return order


def is_hidden(item_id: CategoryId, hidden: Mapping[str, bool]) -> bool:
    return bool(hidden.get(key_of(item_id), False))


def is_category_hidden(
    category_id: CategoryId,
    parent_subgroup_id: Optional[CategoryId],
    hidden: Mapping[str, bool],
) -> bool:
    if is_hidden(category_id, hidden):
        return True
    return parent_subgroup_id is not None and is_hidden(parent_subgroup_id, hidden)


def toggle_hidden(hidden: Mapping[str, bool], item_id: CategoryId) -> dict[str, bool]:
    updated = dict(hidden)
    updated[key_of(item_id)] = not is_hidden(item_id, hidden)
    return updated


def set_hidden(
    hidden: Mapping[str, bool], item_ids: Iterable[CategoryId], flag: bool
) -> dict[str, bool]:
    updated = dict(hidden)
    for key in _keys(item_ids):
        updated[key] = flag
    return updated


def count_visible_members(
    subgroup: TableSubgroup,
    hidden: Mapping[str, bool],
    excluded: Iterable[CategoryId] = (),
) -> int:
    excluded_keys = set(_keys(excluded))
    return sum(
        1
        for cid in subgroup.category_ids
        if cid not in excluded_keys
        and not is_category_hidden(cid, subgroup.id, hidden)
    )


def toggle_excluded(excluded: Iterable[CategoryId], category_id: CategoryId) -> set[str]:
    updated = set(_keys(excluded))
    key = key_of(category_id)
    if key in updated:
        updated.discard(key)
    else:
        updated.add(key)
    return updated


def compute_balances(
    traversal: Iterable[tuple[Optional[str], Optional[str]]],
    entries: Mapping[str, BudgetEntry],
    total_income: int,
    hidden: Mapping[str, bool],
) -> Balances:
    running = total_income
    category_balances: dict[str, int] = {}
    subgroup_balances: dict[str, int] = {}
    for category_id, subgroup_id in traversal:
        if category_id is not None:
            entry = entries.get(category_id)
            if entry is not None and not is_category_hidden(
                category_id, subgroup_id, hidden
            ):
                running -= entry.net_spend
            category_balances[category_id] = running
        if subgroup_id is not None:
            subgroup_balances[subgroup_id] = running
    return Balances(categories=category_balances, subgroups=subgroup_balances)


def subgroup_subtotals(
    blocks: Iterable[Block],
    entries: Mapping[str, BudgetEntry],
    hidden: Mapping[str, bool],
) -> dict[str, Subtotal]:
    subtotals: dict[str, Subtotal] = {}
    for block in blocks:
        if block.subgroup is None:
            continue
        subtotal = Subtotal()
        for cat in block.categories:
            entry = entries.get(cat.id)
            if entry is None or is_category_hidden(cat.id, block.subgroup.id, hidden):
                continue
            subtotal = subtotal.add(entry)
        subtotals[block.subgroup.id] = subtotal
    return subtotals


def compute_totals(
    traversal: Iterable[tuple[Optional[str], Optional[str]]],
    entries: Mapping[str, BudgetEntry],
    total_income: int,
    hidden: Mapping[str, bool],
) -> Totals:
    acc = Subtotal()
    for category_id, subgroup_id in traversal:
        if category_id is None:
            continue
        entry = entries.get(category_id)
        if entry is None or is_category_hidden(category_id, subgroup_id, hidden):
            continue
        acc = acc.add(entry)
    return Totals(
        efectivo=acc.efectivo,
        credito=acc.credito,
        ahorro_efectivo=acc.ahorro_efectivo,
        ahorro_credito=acc.ahorro_credito,
        net_spend=acc.net_spend,
        total=acc.total,
        total_income=total_income,
        final_balance=total_income - acc.net_spend,
    )


def move_category(
    order: Iterable[CategoryId], dragged: CategoryId, target: CategoryId
) -> list[str]:
    keys = _keys(order)
    dragged_key, target_key = key_of(dragged), key_of(target)
    if dragged_key == target_key or dragged_key not in keys or target_key not in keys:
        return keys
    dragged_index = keys.index(dragged_key)
    target_index = keys.index(target_key)
    keys.pop(dragged_index)
    if dragged_index < target_index:
        keys.insert(target_index - 1, dragged_key)
    else:
        keys.insert(target_index, dragged_key)
    return keys


def move_subgroup(
    order: Iterable[CategoryId],
    dragged: CategoryId,
    target: Optional[CategoryId],
    position: str = "before",
) -> list[str]:
    if position not in ("before", "after"):
        raise ValueError(f"Unknown drop position: {position}")
    keys = _keys(order)
    dragged_key = key_of(dragged)
    if dragged_key not in keys:
        return keys
    target_key = key_of(target) if target is not None else None
    if target_key == dragged_key:
        return keys
    keys.remove(dragged_key)
    if target_key is None or target_key not in keys:
        keys.append(dragged_key)
        return keys
    target_index = keys.index(target_key)
    if position == "after":
        target_index += 1
    keys.insert(target_index, dragged_key)
    return keys


def primary_tipo_gasto(
    subgroup: TableSubgroup, categories: Iterable[TableCategory]
) -> Optional[TipoGasto]:
    """Most frequent tipo_gasto among members, first seen wins ties."""
    by_id = {c.id: c for c in categories}
    counts: dict[TipoGasto, int] = {}
    for cid in subgroup.category_ids:
        cat = by_id.get(cid)
        if cat is not None and cat.tipo_gasto is not None:
            counts[cat.tipo_gasto] = counts.get(cat.tipo_gasto, 0) + 1
    if not counts:
        return None
    return max(counts, key=counts.__getitem__)


def build_table_view(state: TableState) -> TableView:
    blocks = build_blocks(
        state.categories,
        state.subgroups,
        category_order=state.category_order,
        subgroup_order=state.subgroup_order,
        excluded=state.excluded,
        sort=state.sort,
        entries=state.entries,
        hide_empty=state.hide_empty,
    )
    traversal = traversal_order(blocks)
    balances = compute_balances(
        traversal, state.entries, state.total_income, state.hidden
    )
    headers = {
        block.subgroup.id: SubgroupHeader(
            name=block.subgroup.name,
            member_count=len(block.categories),
            visible_count=sum(
                1
                for c in block.categories
                if not is_category_hidden(c.id, block.subgroup.id, state.hidden)
            ),
            hidden=is_hidden(block.subgroup.id, state.hidden),
        )
        for block in blocks
        if block.subgroup is not None
    }
    return TableView(
        rows=organize_rows(blocks, state.expanded),
        balances=balances.categories,
        subgroup_balances=balances.subgroups,
        subtotals=subgroup_subtotals(blocks, state.entries, state.hidden),
        headers=headers,
        totals=compute_totals(
            traversal, state.entries, state.total_income, state.hidden
        ),
    )
