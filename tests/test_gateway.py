import io
import json
from urllib.error import HTTPError, URLError

import pytest

import gateway
from budget_table import BudgetEntry
from csrf import CSRF_HEADER
from errors import NetworkError
from gateway import HttpSimulationGateway


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def _http_error(url: str, status: int, detail: str) -> HTTPError:
    body = json.dumps({"detail": detail}).encode("utf-8")
    return HTTPError(url, status, "error", {}, io.BytesIO(body))


def _install(monkeypatch, handler) -> list:
    requests = []

    def fake_urlopen(req, timeout=None):
        requests.append(req)
        result = handler(req)
        if isinstance(result, Exception):
            raise result
        return FakeResponse(result)

    monkeypatch.setattr(gateway, "urlopen", fake_urlopen)
    return requests


def _json(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


def test_categories_are_parsed_into_table_categories(monkeypatch) -> None:
    requests = _install(
        monkeypatch,
        lambda req: _json(
            [
                {"id": 1, "name": "Rent", "tipo_gasto": "F", "archived": False},
                {"id": 2, "name": "Misc", "tipo_gasto": None, "archived": False},
            ]
        ),
    )

    client = HttpSimulationGateway(base_url="http://api.test/", timeout=3)
    categories = client.categories()

    assert [(c.id, c.name) for c in categories] == [("1", "Rent"), ("2", "Misc")]
    assert categories[0].tipo_gasto.value == "F"
    assert categories[1].tipo_gasto is None
    assert requests[0].full_url == "http://api.test/api/categories"
    assert requests[0].get_method() == "GET"


def test_mutations_send_a_cached_csrf_token(monkeypatch) -> None:
    def handler(req):
        if req.full_url.endswith("/api/csrf-token"):
            return _json({"csrf_token": "tok-1"})
        return b""

    requests = _install(monkeypatch, handler)
    client = HttpSimulationGateway(base_url="http://api.test", timeout=3)

    client.save_simulation_budgets(5, {"3": BudgetEntry(efectivo=100)})
    client.delete_subgroup(5, "sg-1")

    urls = [r.full_url for r in requests]
    assert urls == [
        "http://api.test/api/csrf-token",
        "http://api.test/api/simulations/5/budgets",
        "http://api.test/api/simulations/5/subgroups/sg-1",
    ]
    save = requests[1]
    assert save.get_method() == "PUT"
    assert save.get_header(CSRF_HEADER.capitalize()) == "tok-1"
    assert json.loads(save.data) == {
        "entries": [
            {
                "category_id": 3,
                "efectivo_cents": 100,
                "credito_cents": 0,
                "ahorro_efectivo_cents": 0,
                "ahorro_credito_cents": 0,
                "needs_adjustment": False,
            }
        ]
    }


def test_rejected_csrf_token_is_refreshed_once(monkeypatch) -> None:
    tokens = iter(["stale", "fresh"])

    def handler(req):
        if req.full_url.endswith("/api/csrf-token"):
            return _json({"csrf_token": next(tokens)})
        if req.get_header(CSRF_HEADER.capitalize()) == "stale":
            return _http_error(req.full_url, 403, "Invalid CSRF token")
        return _json({"id": "sg-9", "name": "Home", "category_ids": [1, 2]})

    requests = _install(monkeypatch, handler)
    client = HttpSimulationGateway(base_url="http://api.test", timeout=3)

    created = client.create_subgroup(5, "Home", ["1", "2"])

    assert created.id == "sg-9"
    assert created.category_ids == ("1", "2")
    assert len(requests) == 4
    assert json.loads(requests[-1].data) == {"name": "Home", "category_ids": [1, 2]}


def test_http_errors_carry_status_and_detail(monkeypatch) -> None:
    def handler(req):
        if req.full_url.endswith("/api/csrf-token"):
            return _json({"csrf_token": "tok"})
        return _http_error(req.full_url, 409, "Sub-group \"Home\" already exists")

    _install(monkeypatch, handler)
    client = HttpSimulationGateway(base_url="http://api.test", timeout=3)

    with pytest.raises(NetworkError, match="already exists") as exc_info:
        client.update_subgroup(5, "sg-1", name="Home")

    assert exc_info.value.status == 409


def test_connection_failures_and_bad_payloads_raise_network_error(monkeypatch) -> None:
    _install(monkeypatch, lambda req: URLError("connection refused"))
    client = HttpSimulationGateway(base_url="http://api.test", timeout=3)

    with pytest.raises(NetworkError, match="connection refused") as exc_info:
        client.subgroups(5)
    assert exc_info.value.status is None

    _install(monkeypatch, lambda req: b"<html>oops</html>")
    with pytest.raises(NetworkError, match="Invalid JSON"):
        client.incomes(5)

    _install(monkeypatch, lambda req: _json({"items": []}))
    with pytest.raises(NetworkError, match="Unexpected budgets response"):
        client.simulation_budgets(5)
