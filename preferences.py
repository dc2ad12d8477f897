import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from budget_table import key_of
from config import get_settings
from errors import ParseError

logger = logging.getLogger(__name__)

PREFERENCES_VERSION = 1
SORT_FIELDS = (None, "tipo_gasto", "name")
SORT_DIRECTIONS = ("asc", "desc")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SimulationPreferences:
    category_order: list[str] = field(default_factory=list)
    subgroup_order: list[str] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    hidden: dict[str, bool] = field(default_factory=dict)
    expanded: list[str] = field(default_factory=list)
    sort_field: Optional[str] = None
    tipo_gasto_sort_state: int = 1
    sort_direction: str = "asc"
    hide_empty: bool = False

    @classmethod
    def from_dict(cls, payload: dict) -> "SimulationPreferences":
        defaults = cls()
        try:
            prefs = cls(
                category_order=_id_list(payload.get("category_order", [])),
                subgroup_order=_id_list(payload.get("subgroup_order", [])),
                excluded=_id_list(payload.get("excluded", [])),
                hidden=_hidden_map(payload.get("hidden", {})),
                expanded=_id_list(payload.get("expanded", [])),
                sort_field=payload.get("sort_field", defaults.sort_field),
                tipo_gasto_sort_state=payload.get(
                    "tipo_gasto_sort_state", defaults.tipo_gasto_sort_state
                ),
                sort_direction=payload.get("sort_direction", defaults.sort_direction),
                hide_empty=payload.get("hide_empty", defaults.hide_empty),
            )
        except (TypeError, ValueError, AttributeError) as exc:
            raise ParseError(f"Invalid preference payload: {exc}") from exc
        if prefs.sort_field not in SORT_FIELDS:
            raise ParseError(f"Unknown sort field: {prefs.sort_field!r}")
        if prefs.sort_direction not in SORT_DIRECTIONS:
            raise ParseError(f"Unknown sort direction: {prefs.sort_direction!r}")
        if (
            isinstance(prefs.tipo_gasto_sort_state, bool)
            or prefs.tipo_gasto_sort_state not in (0, 1, 2)
        ):
            raise ParseError("Invalid tipo_gasto sort state")
        if not isinstance(prefs.hide_empty, bool):
            raise ParseError("hide_empty must be a boolean")
        return prefs

    def to_dict(self) -> dict:
        return asdict(self)


def _id_list(raw) -> list[str]:
    if not isinstance(raw, list):
        raise TypeError("expected a list of identifiers")
    return list(dict.fromkeys(key_of(v) for v in raw))


def _hidden_map(raw) -> dict[str, bool]:
    if not isinstance(raw, dict):
        raise TypeError("expected a mapping of hidden flags")
    hidden = {}
    for key, flag in raw.items():
        if not isinstance(flag, bool):
            raise TypeError(f"hidden flag for {key!r} is not a boolean")
        hidden[key_of(key)] = flag
    return hidden


class PreferenceStore:
    """Per-simulation display preferences kept as JSON files on local disk.

    The files are a cache. Anything unreadable is deleted and replaced by
    defaults, and entries older than ``max_age_days`` are treated as absent.
    """

    def __init__(
        self,
        directory: Optional[Path] = None,
        max_age_days: Optional[int] = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = get_settings()
        self.directory = Path(directory or settings.preferences_dir)
        self.max_age_days = (
            max_age_days
            if max_age_days is not None
            else settings.preferences_max_age_days
        )
        self._now = now

    def _path(self, simulation_id: int) -> Path:
        return self.directory / f"simulation_{int(simulation_id)}.json"

    def _read(self, path: Path) -> tuple[SimulationPreferences, datetime]:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ParseError(f"Unreadable preference file {path.name}") from exc
        if not isinstance(payload, dict):
            raise ParseError("Preference file does not hold an object")
        if payload.get("version") != PREFERENCES_VERSION:
            raise ParseError(f"Unsupported preference version: {payload.get('version')!r}")
        try:
            saved_at = datetime.fromisoformat(payload["saved_at"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError("Missing or invalid saved_at") from exc
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)
        prefs_payload = payload.get("preferences")
        if not isinstance(prefs_payload, dict):
            raise ParseError("Missing preferences object")
        return SimulationPreferences.from_dict(prefs_payload), saved_at

    def _expired(self, saved_at: datetime, max_age_days: int) -> bool:
        return self._now() - saved_at > timedelta(days=max_age_days)

    def load(self, simulation_id: int) -> SimulationPreferences:
        path = self._path(simulation_id)
        if not path.exists():
            return SimulationPreferences()
        try:
            prefs, saved_at = self._read(path)
        except ParseError as exc:
            logger.warning(
                f"preferences_reset: simulation_id={simulation_id} reason={exc}"
            )
            self.clear(simulation_id)
            return SimulationPreferences()
        if self._expired(saved_at, self.max_age_days):
            logger.info(f"preferences_expired: simulation_id={simulation_id}")
            self.clear(simulation_id)
            return SimulationPreferences()
        return prefs

    def save(self, simulation_id: int, prefs: SimulationPreferences) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(simulation_id)
        payload = {
            "version": PREFERENCES_VERSION,
            "saved_at": self._now().isoformat(),
            "preferences": prefs.to_dict(),
        }
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, path)

    def clear(self, simulation_id: int) -> None:
        self._path(simulation_id).unlink(missing_ok=True)

    def prune(self, max_age_days: Optional[int] = None) -> int:
        """Delete expired or unreadable preference files, return how many went."""
        if not self.directory.exists():
            return 0
        max_age = max_age_days if max_age_days is not None else self.max_age_days
        removed = 0
        for path in sorted(self.directory.glob("simulation_*.json")):
            try:
                _, saved_at = self._read(path)
            except ParseError:
                stale = True
            else:
                stale = self._expired(saved_at, max_age)
            if stale:
                path.unlink(missing_ok=True)
                removed += 1
        return removed
