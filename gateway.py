from __future__ import annotations

import json
import logging
from typing import Iterable, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from budget_table import BudgetEntry, TableCategory, TableSubgroup
from config import get_settings
from csrf import CSRF_HEADER
from errors import NetworkError

logger = logging.getLogger(__name__)


def _error_detail(exc: HTTPError) -> str:
    try:
        body = json.loads(exc.read().decode("utf-8"))
    except (OSError, ValueError):
        return str(exc.reason)
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(exc.reason)


class HttpSimulationGateway:
    """JSON client for the simulation API used by ``SimulationEditor``."""

    def __init__(
        self, base_url: Optional[str] = None, timeout: Optional[float] = None
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.api_timeout_secs
        self._csrf_token: Optional[str] = None

    def _send(self, method: str, path: str, payload=None, headers=None):
        all_headers = {"Accept": "application/json"}
        all_headers.update(headers or {})
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            all_headers["Content-Type"] = "application/json"
        req = Request(
            f"{self.base_url}{path}", data=data, headers=all_headers, method=method
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except HTTPError as exc:
            raise NetworkError(
                f"{method} {path} failed with status {exc.code}: {_error_detail(exc)}",
                status=exc.code,
            ) from exc
        except (URLError, TimeoutError) as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise NetworkError(f"Invalid JSON in response to {method} {path}") from exc

    def csrf_token(self) -> str:
        if self._csrf_token is None:
            payload = self._send("GET", "/api/csrf-token")
            try:
                self._csrf_token = str(payload["csrf_token"])
            except (KeyError, TypeError) as exc:
                raise NetworkError("Unexpected CSRF token response") from exc
        return self._csrf_token

    def _mutate(self, method: str, path: str, payload=None):
        try:
            return self._send(
                method, path, payload, headers={CSRF_HEADER: self.csrf_token()}
            )
        except NetworkError as exc:
            if exc.status != 403:
                raise
        # The cached token expired; fetch a fresh one and send once more.
        logger.info(f"csrf_token_refreshed: path={path}")
        self._csrf_token = None
        return self._send(method, path, payload, headers={CSRF_HEADER: self.csrf_token()})

    @staticmethod
    def _subgroup(payload: Mapping) -> TableSubgroup:
        return TableSubgroup(
            id=payload["id"],
            name=payload["name"],
            category_ids=tuple(str(cid) for cid in payload.get("category_ids", [])),
            display_order=int(payload.get("display_order", 0)),
        )

    def categories(self) -> list[TableCategory]:
        payload = self._send("GET", "/api/categories")
        try:
            return [
                TableCategory(id=str(c["id"]), name=c["name"], tipo_gasto=c.get("tipo_gasto"))
                for c in payload
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError("Unexpected categories response") from exc

    def simulation_budgets(self, simulation_id: int) -> dict[str, BudgetEntry]:
        payload = self._send("GET", f"/api/simulations/{simulation_id}/budgets")
        try:
            return {
                str(e["category_id"]): BudgetEntry(
                    efectivo=int(e["efectivo_cents"]),
                    credito=int(e["credito_cents"]),
                    ahorro_efectivo=int(e["ahorro_efectivo_cents"]),
                    ahorro_credito=int(e["ahorro_credito_cents"]),
                    needs_adjustment=bool(e.get("needs_adjustment", False)),
                )
                for e in payload["entries"]
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError("Unexpected budgets response") from exc

    def save_simulation_budgets(
        self, simulation_id: int, entries: Mapping[str, BudgetEntry]
    ) -> None:
        body = {
            "entries": [
                {
                    "category_id": int(category_id),
                    "efectivo_cents": entry.efectivo,
                    "credito_cents": entry.credito,
                    "ahorro_efectivo_cents": entry.ahorro_efectivo,
                    "ahorro_credito_cents": entry.ahorro_credito,
                    "needs_adjustment": entry.needs_adjustment,
                }
                for category_id, entry in entries.items()
            ]
        }
        self._mutate("PUT", f"/api/simulations/{simulation_id}/budgets", body)

    def incomes(self, simulation_id: int) -> list[dict]:
        payload = self._send("GET", f"/api/simulations/{simulation_id}/incomes")
        if not isinstance(payload, list):
            raise NetworkError("Unexpected incomes response")
        return payload

    def subgroups(self, simulation_id: int) -> list[TableSubgroup]:
        payload = self._send("GET", f"/api/simulations/{simulation_id}/subgroups")
        try:
            return [self._subgroup(sg) for sg in payload]
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError("Unexpected sub-groups response") from exc

    def create_subgroup(
        self, simulation_id: int, name: str, category_ids: Iterable[str]
    ) -> TableSubgroup:
        payload = self._mutate(
            "POST",
            f"/api/simulations/{simulation_id}/subgroups",
            {"name": name, "category_ids": [int(cid) for cid in category_ids]},
        )
        try:
            return self._subgroup(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError("Unexpected sub-group response") from exc

    def update_subgroup(
        self,
        simulation_id: int,
        subgroup_id: str,
        *,
        name: Optional[str] = None,
        category_ids: Optional[Iterable[str]] = None,
        display_order: Optional[int] = None,
    ) -> TableSubgroup:
        body: dict[str, object] = {}
        if name is not None:
            body["name"] = name
        if category_ids is not None:
            body["category_ids"] = [int(cid) for cid in category_ids]
        if display_order is not None:
            body["display_order"] = display_order
        payload = self._mutate(
            "PATCH", f"/api/simulations/{simulation_id}/subgroups/{subgroup_id}", body
        )
        try:
            return self._subgroup(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkError("Unexpected sub-group response") from exc

    def delete_subgroup(self, simulation_id: int, subgroup_id: str) -> None:
        self._mutate(
            "DELETE", f"/api/simulations/{simulation_id}/subgroups/{subgroup_id}"
        )
