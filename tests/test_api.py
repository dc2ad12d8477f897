from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from csrf import CSRF_HEADER, generate_csrf_token
from database import Base
from main import app, get_db


def _client() -> TestClient:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    testing_session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def _headers() -> dict[str, str]:
    return {CSRF_HEADER: generate_csrf_token()}


def _worked_example(client: TestClient) -> dict:
    headers = _headers()
    ids = {}
    for name, tipo in (("A", "F"), ("B", "V"), ("C", None)):
        resp = client.post(
            "/api/categories", json={"name": name, "tipo_gasto": tipo}, headers=headers
        )
        assert resp.status_code == 201
        ids[name] = resp.json()["id"]
    sim = client.post("/api/simulations", json={"name": "Plan"}, headers=headers).json()
    client.post(
        f"/api/simulations/{sim['id']}/incomes",
        json={"description": "Salary", "amount_cents": 50_000},
        headers=headers,
    )
    resp = client.put(
        f"/api/simulations/{sim['id']}/budgets",
        json={
            "entries": [
                {
                    "category_id": ids["A"],
                    "efectivo_cents": 10_000,
                    "ahorro_efectivo_cents": 2_000,
                },
                {"category_id": ids["B"], "efectivo_cents": 5_000},
                {
                    "category_id": ids["C"],
                    "efectivo_cents": 3_000,
                    "ahorro_efectivo_cents": 1_000,
                },
            ]
        },
        headers=headers,
    )
    assert resp.status_code == 200
    subgroup = client.post(
        f"/api/simulations/{sim['id']}/subgroups",
        json={"name": "Utilities", "category_ids": [ids["C"]]},
        headers=headers,
    ).json()
    return {"sim": sim["id"], "subgroup": subgroup["id"], **ids}


def test_mutations_require_a_valid_csrf_token() -> None:
    client = _client()

    missing = client.post("/api/categories", json={"name": "Rent"})
    forged = client.post(
        "/api/categories", json={"name": "Rent"}, headers={CSRF_HEADER: "forged"}
    )

    assert missing.status_code == 403
    assert forged.status_code == 403
    assert forged.json() == {"detail": "Invalid CSRF token"}

    token = client.get("/api/csrf-token").json()["csrf_token"]
    ok = client.post("/api/categories", json={"name": "Rent"}, headers={CSRF_HEADER: token})
    assert ok.status_code == 201


def test_table_endpoint_reproduces_the_worked_example() -> None:
    client = _client()
    ids = _worked_example(client)

    resp = client.post(f"/api/simulations/{ids['sim']}/table", json={})

    assert resp.status_code == 200
    table = resp.json()
    assert [(r["kind"], r["id"]) for r in table["rows"]] == [
        ("category", str(ids["A"])),
        ("category", str(ids["B"])),
        ("header", ids["subgroup"]),
        ("subtotal", ids["subgroup"]),
    ]
    assert table["balances"] == {
        str(ids["A"]): 42_000,
        str(ids["B"]): 37_000,
        str(ids["C"]): 35_000,
    }
    assert table["subgroup_balances"] == {ids["subgroup"]: 35_000}
    subtotal = table["subtotals"][ids["subgroup"]]
    assert subtotal["efectivo"] == 3_000
    assert subtotal["ahorro_efectivo"] == 1_000
    assert subtotal["total"] == 2_000
    assert table["totals"]["final_balance"] == 35_000

    hidden = client.post(
        f"/api/simulations/{ids['sim']}/table",
        json={"hidden": [str(ids["B"])], "expanded": [ids["subgroup"]]},
    ).json()
    assert hidden["balances"][str(ids["B"])] == 42_000
    assert hidden["totals"]["final_balance"] == 40_000
    assert ("category", str(ids["C"])) in [(r["kind"], r["id"]) for r in hidden["rows"]]


def test_budgets_summary_and_validation() -> None:
    client = _client()
    ids = _worked_example(client)
    headers = _headers()

    body = client.get(f"/api/simulations/{ids['sim']}/budgets").json()
    assert len(body["entries"]) == 3
    assert body["summary"]["missing_category_ids"] == []

    unknown = client.put(
        f"/api/simulations/{ids['sim']}/budgets",
        json={"entries": [{"category_id": 999, "efectivo_cents": 1}]},
        headers=headers,
    )
    assert unknown.status_code == 400
    assert "Unknown category ids" in unknown.json()["detail"]

    negative = client.put(
        f"/api/simulations/{ids['sim']}/budgets",
        json={"entries": [{"category_id": ids["A"], "efectivo_cents": -1}]},
        headers=headers,
    )
    assert negative.status_code == 422

    missing = client.get("/api/simulations/999/budgets")
    assert missing.status_code == 404


def test_subgroup_rules_are_enforced_by_the_server() -> None:
    client = _client()
    ids = _worked_example(client)
    headers = _headers()
    url = f"/api/simulations/{ids['sim']}/subgroups"

    duplicate = client.post(
        url, json={"name": " utilities", "category_ids": [ids["A"]]}, headers=headers
    )
    overlap = client.post(
        url, json={"name": "Other", "category_ids": [ids["C"]]}, headers=headers
    )
    empty = client.post(url, json={"name": "Empty", "category_ids": []}, headers=headers)

    assert duplicate.status_code == 409
    assert overlap.status_code == 409
    assert empty.status_code == 400

    patched = client.patch(
        f"{url}/{ids['subgroup']}",
        json={"category_ids": [ids["C"], ids["A"]]},
        headers=headers,
    )
    assert patched.status_code == 200
    assert patched.json()["category_ids"] == [ids["C"], ids["A"]]

    deleted = client.delete(f"{url}/{ids['subgroup']}", headers=headers)
    assert deleted.status_code == 204
    assert client.get(url).json() == []
    assert client.delete(f"{url}/{ids['subgroup']}", headers=headers).status_code == 404


def test_export_csv_lists_categories_subtotals_and_total() -> None:
    client = _client()
    ids = _worked_example(client)

    resp = client.get(f"/api/simulations/{ids['sim']}/export.csv")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.splitlines()
    assert lines == [
        "Subgroup,Category,TipoGasto,Efectivo,Credito,AhorroEfectivo,AhorroCredito,Total,Balance",
        ",A,F,100.00,0.00,20.00,0.00,80.00,420.00",
        ",B,V,50.00,0.00,0.00,0.00,50.00,370.00",
        "Utilities,C,,30.00,0.00,10.00,0.00,20.00,350.00",
        "Utilities,Subtotal,,30.00,0.00,10.00,0.00,20.00,350.00",
        ",Total,,180.00,0.00,30.00,0.00,150.00,350.00",
    ]


def test_templates_round_trip_through_the_api() -> None:
    client = _client()
    ids = _worked_example(client)
    headers = _headers()

    saved = client.post(
        f"/api/simulations/{ids['sim']}/save-as-template",
        json={"name": "Layout"},
        headers=headers,
    )
    assert saved.status_code == 201
    template = saved.json()
    assert [sg["category_ids"] for sg in template["subgroups"]] == [[ids["C"]]]

    other = client.post("/api/simulations", json={"name": "Other"}, headers=headers).json()
    applied = client.post(
        f"/api/simulations/{other['id']}/apply-template",
        json={"template_id": template["id"]},
        headers=headers,
    )
    assert applied.status_code == 200
    assert [sg["name"] for sg in applied.json()] == ["Utilities"]

    record = client.get(f"/api/simulations/{other['id']}/applied-template").json()
    assert record["template_id"] == template["id"]
    assert record["template_name"] == "Layout"

    assert client.get("/api/subgroup-templates/nope").status_code == 404
    assert (
        client.delete(f"/api/subgroup-templates/{template['id']}", headers=headers).status_code
        == 204
    )
    assert client.get("/api/subgroup-templates").json() == []


def test_copy_simulation_via_api() -> None:
    client = _client()
    ids = _worked_example(client)

    resp = client.post(f"/api/simulations/{ids['sim']}/copy", headers=_headers())

    assert resp.status_code == 201
    copy = resp.json()
    assert copy["name"] == "Plan (copy)"
    detail = client.get(f"/api/simulations/{copy['id']}").json()
    assert detail["total_income_cents"] == 50_000
    assert detail["subgroup_count"] == 1


def test_interest_rate_conversion_and_scenarios() -> None:
    client = _client()

    converted = client.post(
        "/api/interest-rates/convert", json={"rate": 0.12, "rate_type": "EA"}
    ).json()
    assert converted["conversions"]["EM"] == 0.009489
    assert converted["conversions"]["NA"] == 0.113865
    assert converted["rows"][0]["formula"] == "Input value"

    too_high = client.post(
        "/api/interest-rates/convert", json={"rate": 11, "rate_type": "EA"}
    )
    assert too_high.status_code == 422

    created = client.post(
        "/api/interest-rate-scenarios",
        json={"name": "Card", "input_rate": 0.01, "input_rate_type": "EM"},
        headers=_headers(),
    )
    assert created.status_code == 201
    scenario = created.json()
    assert scenario["input_rate"] == 0.01
    assert scenario["conversions"]["EA"] == 0.126825

    listed = client.get("/api/interest-rate-scenarios").json()
    assert [s["name"] for s in listed] == ["Card"]
    deleted = client.delete(
        f"/api/interest-rate-scenarios/{scenario['id']}", headers=_headers()
    )
    assert deleted.status_code == 204
    assert client.get("/api/interest-rate-scenarios").json() == []
