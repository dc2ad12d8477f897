import logging
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from budget_table import Subtotal, TableView
from config import get_settings
from csrf import CSRF_HEADER, generate_csrf_token, validate_csrf_token
from database import SessionLocal
from errors import ConflictError, NotFoundError
from interest_rates import conversion_display, convert_rate
from models import (
    Category,
    InterestRateScenario,
    Simulation,
    SimulationAppliedTemplate,
    SimulationBudget,
    SimulationIncome,
    SimulationSubgroup,
    SubgroupTemplate,
)
from scheduler import SchedulerManager
from schemas import (
    ApplyTemplateIn,
    BudgetBatchIn,
    CategoryIn,
    CategoryUpdateIn,
    InterestRateScenarioIn,
    RateConvertIn,
    RefreshTemplateIn,
    SaveAsTemplateIn,
    SimulationCopyIn,
    SimulationIn,
    SimulationIncomeIn,
    SimulationUpdateIn,
    SubgroupCreateIn,
    SubgroupUpdateIn,
    TableViewOptions,
    TemplateIn,
    TemplateUpdateIn,
)
from services import (
    CategoryService,
    InterestRateScenarioService,
    SimulationBudgetService,
    SimulationService,
    SimulationTableService,
    SubgroupService,
    SubgroupTemplateService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Simulator")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def require_csrf(token: Optional[str] = Header(default=None, alias=CSRF_HEADER)) -> None:
    if not validate_csrf_token(token):
        raise HTTPException(status_code=403, detail="Invalid CSRF token")


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def category_out(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "tipo_gasto": category.tipo_gasto.value if category.tipo_gasto else None,
        "archived": category.archived_at is not None,
    }


def simulation_out(simulation: Simulation) -> dict:
    return {
        "id": simulation.id,
        "name": simulation.name,
        "description": simulation.description,
        "created_at": _iso(simulation.created_at),
        "updated_at": _iso(simulation.updated_at),
    }


def income_out(income: SimulationIncome) -> dict:
    return {
        "id": income.id,
        "description": income.description,
        "amount_cents": income.amount_cents,
    }


def budget_out(budget: SimulationBudget) -> dict:
    return {
        "category_id": budget.category_id,
        "efectivo_cents": budget.efectivo_cents,
        "credito_cents": budget.credito_cents,
        "ahorro_efectivo_cents": budget.ahorro_efectivo_cents,
        "ahorro_credito_cents": budget.ahorro_credito_cents,
        "needs_adjustment": budget.needs_adjustment,
    }


def subgroup_out(subgroup: SimulationSubgroup) -> dict:
    return {
        "id": subgroup.id,
        "name": subgroup.name,
        "category_ids": list(subgroup.category_ids),
        "display_order": subgroup.display_order,
    }


def template_out(template: SubgroupTemplate) -> dict:
    return {
        "id": template.id,
        "name": template.name,
        "description": template.description,
        "subgroups": [
            {
                "id": tsg.id,
                "name": tsg.name,
                "display_order": tsg.display_order,
                "category_ids": list(tsg.category_ids),
            }
            for tsg in template.subgroups
        ],
        "created_at": _iso(template.created_at),
        "updated_at": _iso(template.updated_at),
    }


def applied_template_out(applied: Optional[SimulationAppliedTemplate]) -> Optional[dict]:
    if applied is None:
        return None
    return {
        "template_id": applied.template_id,
        "template_name": applied.template.name if applied.template else None,
        "applied_at": _iso(applied.applied_at),
    }


def _subtotal_out(subtotal: Subtotal) -> dict:
    payload = asdict(subtotal)
    payload["net_spend"] = subtotal.net_spend
    payload["total"] = subtotal.total
    return payload


def table_out(view: TableView) -> dict:
    return {
        "rows": [asdict(row) for row in view.rows],
        "balances": view.balances,
        "subgroup_balances": view.subgroup_balances,
        "subtotals": {key: _subtotal_out(s) for key, s in view.subtotals.items()},
        "headers": {key: asdict(h) for key, h in view.headers.items()},
        "totals": asdict(view.totals),
    }


def scenario_out(scenario: InterestRateScenario) -> dict:
    rate = InterestRateScenarioService.input_rate(scenario)
    return {
        "id": scenario.id,
        "name": scenario.name,
        "input_rate": float(rate),
        "input_rate_type": scenario.input_rate_type.value,
        "notes": scenario.notes,
        "created_at": _iso(scenario.created_at),
        "conversions": convert_rate(rate, scenario.input_rate_type).as_dict(),
    }


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"csrf_token": generate_csrf_token()}


@app.get("/api/categories")
def list_categories(include_archived: bool = False, db: Session = Depends(get_db)):
    categories = CategoryService(db).list_all(include_archived=include_archived)
    return [category_out(c) for c in categories]


@app.post("/api/categories", status_code=201, dependencies=[Depends(require_csrf)])
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return category_out(category)


@app.patch("/api/categories/{category_id}", dependencies=[Depends(require_csrf)])
def update_category(
    category_id: int, data: CategoryUpdateIn, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update(category_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return category_out(category)


@app.post(
    "/api/categories/{category_id}/archive", dependencies=[Depends(require_csrf)]
)
def archive_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).archive(category_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/simulations")
def list_simulations(db: Session = Depends(get_db)):
    return [simulation_out(s) for s in SimulationService(db).list_all()]


@app.post("/api/simulations", status_code=201, dependencies=[Depends(require_csrf)])
def create_simulation(data: SimulationIn, db: Session = Depends(get_db)):
    try:
        simulation = SimulationService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return simulation_out(simulation)


@app.get("/api/simulations/{simulation_id}")
def get_simulation(simulation_id: int, db: Session = Depends(get_db)):
    service = SimulationService(db)
    try:
        simulation = service.get(simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    payload = simulation_out(simulation)
    payload["total_income_cents"] = service.total_income(simulation_id)
    payload["subgroup_count"] = len(simulation.subgroups)
    return payload


@app.patch("/api/simulations/{simulation_id}", dependencies=[Depends(require_csrf)])
def update_simulation(
    simulation_id: int, data: SimulationUpdateIn, db: Session = Depends(get_db)
):
    try:
        simulation = SimulationService(db).update(simulation_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return simulation_out(simulation)


@app.delete("/api/simulations/{simulation_id}", dependencies=[Depends(require_csrf)])
def delete_simulation(simulation_id: int, db: Session = Depends(get_db)):
    try:
        SimulationService(db).delete(simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post(
    "/api/simulations/{simulation_id}/copy",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def copy_simulation(
    simulation_id: int,
    data: Optional[SimulationCopyIn] = None,
    db: Session = Depends(get_db),
):
    try:
        clone = SimulationService(db).copy(
            simulation_id, name=data.name if data else None
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return simulation_out(clone)


@app.get("/api/simulations/{simulation_id}/incomes")
def list_incomes(simulation_id: int, db: Session = Depends(get_db)):
    try:
        incomes = SimulationService(db).list_incomes(simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return [income_out(i) for i in incomes]


@app.post(
    "/api/simulations/{simulation_id}/incomes",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def add_income(
    simulation_id: int, data: SimulationIncomeIn, db: Session = Depends(get_db)
):
    try:
        income = SimulationService(db).add_income(simulation_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return income_out(income)


@app.delete(
    "/api/simulations/{simulation_id}/incomes/{income_id}",
    dependencies=[Depends(require_csrf)],
)
def delete_income(simulation_id: int, income_id: int, db: Session = Depends(get_db)):
    try:
        SimulationService(db).delete_income(simulation_id, income_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


def _budgets_payload(service: SimulationBudgetService, simulation_id: int) -> dict:
    return {
        "entries": [budget_out(b) for b in service.list_entries(simulation_id)],
        "summary": service.summary(simulation_id),
    }


@app.get("/api/simulations/{simulation_id}/budgets")
def get_budgets(simulation_id: int, db: Session = Depends(get_db)):
    service = SimulationBudgetService(db)
    try:
        return _budgets_payload(service, simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put(
    "/api/simulations/{simulation_id}/budgets", dependencies=[Depends(require_csrf)]
)
def save_budgets(
    simulation_id: int, data: BudgetBatchIn, db: Session = Depends(get_db)
):
    service = SimulationBudgetService(db)
    try:
        service.save_entries(simulation_id, data.entries)
        return _budgets_payload(service, simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/simulations/{simulation_id}/subgroups")
def list_subgroups(simulation_id: int, db: Session = Depends(get_db)):
    try:
        subgroups = SubgroupService(db).list_for_simulation(simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return [subgroup_out(sg) for sg in subgroups]


@app.post(
    "/api/simulations/{simulation_id}/subgroups",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_subgroup(
    simulation_id: int, data: SubgroupCreateIn, db: Session = Depends(get_db)
):
    try:
        subgroup = SubgroupService(db).create(simulation_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return subgroup_out(subgroup)


@app.patch(
    "/api/simulations/{simulation_id}/subgroups/{subgroup_id}",
    dependencies=[Depends(require_csrf)],
)
def update_subgroup(
    simulation_id: int,
    subgroup_id: str,
    data: SubgroupUpdateIn,
    db: Session = Depends(get_db),
):
    try:
        subgroup = SubgroupService(db).update(simulation_id, subgroup_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return subgroup_out(subgroup)


@app.delete(
    "/api/simulations/{simulation_id}/subgroups/{subgroup_id}",
    dependencies=[Depends(require_csrf)],
)
def delete_subgroup(
    simulation_id: int, subgroup_id: str, db: Session = Depends(get_db)
):
    try:
        SubgroupService(db).delete(simulation_id, subgroup_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/simulations/{simulation_id}/table")
def simulation_table(
    simulation_id: int,
    options: Optional[TableViewOptions] = None,
    db: Session = Depends(get_db),
):
    try:
        view = SimulationTableService(db).view(simulation_id, options)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return table_out(view)


@app.get("/api/simulations/{simulation_id}/export.csv")
def export_simulation_csv(simulation_id: int, db: Session = Depends(get_db)):
    try:
        content = SimulationTableService(db).export_csv(simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    logger.info(f"simulation_exported: simulation_id={simulation_id}")
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="simulation_{simulation_id}.csv"'
        },
    )


@app.get("/api/simulations/{simulation_id}/applied-template")
def get_applied_template(simulation_id: int, db: Session = Depends(get_db)):
    try:
        applied = SubgroupTemplateService(db).applied_template(simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return applied_template_out(applied)


@app.post(
    "/api/simulations/{simulation_id}/apply-template",
    dependencies=[Depends(require_csrf)],
)
def apply_template(
    simulation_id: int, data: ApplyTemplateIn, db: Session = Depends(get_db)
):
    try:
        subgroups = SubgroupTemplateService(db).apply(simulation_id, data.template_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return [subgroup_out(sg) for sg in subgroups]


@app.post(
    "/api/simulations/{simulation_id}/save-as-template",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def save_as_template(
    simulation_id: int, data: SaveAsTemplateIn, db: Session = Depends(get_db)
):
    try:
        template = SubgroupTemplateService(db).save_from_simulation(simulation_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return template_out(template)


@app.get("/api/subgroup-templates")
def list_templates(db: Session = Depends(get_db)):
    return [template_out(t) for t in SubgroupTemplateService(db).list_all()]


@app.post(
    "/api/subgroup-templates", status_code=201, dependencies=[Depends(require_csrf)]
)
def create_template(data: TemplateIn, db: Session = Depends(get_db)):
    try:
        template = SubgroupTemplateService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return template_out(template)


@app.get("/api/subgroup-templates/{template_id}")
def get_template(template_id: str, db: Session = Depends(get_db)):
    try:
        template = SubgroupTemplateService(db).get(template_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return template_out(template)


@app.patch(
    "/api/subgroup-templates/{template_id}", dependencies=[Depends(require_csrf)]
)
def update_template(
    template_id: str, data: TemplateUpdateIn, db: Session = Depends(get_db)
):
    try:
        template = SubgroupTemplateService(db).update(template_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return template_out(template)


@app.delete(
    "/api/subgroup-templates/{template_id}", dependencies=[Depends(require_csrf)]
)
def delete_template(template_id: str, db: Session = Depends(get_db)):
    try:
        SubgroupTemplateService(db).delete(template_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post(
    "/api/subgroup-templates/{template_id}/refresh",
    dependencies=[Depends(require_csrf)],
)
def refresh_template(
    template_id: str, data: RefreshTemplateIn, db: Session = Depends(get_db)
):
    try:
        template = SubgroupTemplateService(db).refresh(template_id, data.simulation_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return template_out(template)


@app.post("/api/interest-rates/convert")
def convert_interest_rate(data: RateConvertIn):
    return {
        "rate": data.rate,
        "rate_type": data.rate_type.value,
        "conversions": convert_rate(data.rate, data.rate_type).as_dict(),
        "rows": conversion_display(data.rate, data.rate_type),
    }


@app.get("/api/interest-rate-scenarios")
def list_scenarios(db: Session = Depends(get_db)):
    return [scenario_out(s) for s in InterestRateScenarioService(db).list_all()]


@app.post(
    "/api/interest-rate-scenarios",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_scenario(data: InterestRateScenarioIn, db: Session = Depends(get_db)):
    try:
        scenario = InterestRateScenarioService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return scenario_out(scenario)


@app.delete(
    "/api/interest-rate-scenarios/{scenario_id}",
    dependencies=[Depends(require_csrf)],
)
def delete_scenario(scenario_id: int, db: Session = Depends(get_db)):
    try:
        InterestRateScenarioService(db).delete(scenario_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
