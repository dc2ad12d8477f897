from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from budget_table import (
    BudgetEntry,
    SortSpec,
    TableCategory,
    TableState,
    TableSubgroup,
    TableView,
    build_table_view,
)
from csv_utils import export_simulation
from errors import ConflictError, NotFoundError, ValidationError
from interest_rates import micros_to_rate, rate_to_micros
from models import (
    Category,
    InterestRateScenario,
    Simulation,
    SimulationAppliedTemplate,
    SimulationBudget,
    SimulationIncome,
    SimulationSubgroup,
    SubgroupCategory,
    SubgroupTemplate,
    TemplateCategory,
    TemplateSubgroup,
)
from schemas import (
    BudgetEntryIn,
    CategoryIn,
    CategoryUpdateIn,
    InterestRateScenarioIn,
    SaveAsTemplateIn,
    SimulationIn,
    SimulationIncomeIn,
    SimulationUpdateIn,
    SubgroupCreateIn,
    SubgroupUpdateIn,
    TableViewOptions,
    TemplateIn,
    TemplateUpdateIn,
)

logger = logging.getLogger(__name__)


def _clean_name(name: Optional[str], label: str) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError(f"{label} name cannot be empty")
    return clean


def _dedupe(ids: Iterable[int]) -> list[int]:
    return list(dict.fromkeys(ids))


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, include_archived: bool = False) -> list[Category]:
        stmt = select(Category).order_by(func.lower(Category.name))
        if not include_archived:
            stmt = stmt.where(Category.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category

    def _ensure_unique(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ConflictError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = _clean_name(data.name, "Category")
        self._ensure_unique(name)
        category = Category(name=name, tipo_gasto=data.tipo_gasto)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdateIn) -> Category:
        category = self.get(category_id)
        if data.name is not None:
            name = _clean_name(data.name, "Category")
            self._ensure_unique(name, exclude_id=category_id)
            category.name = name
        # An explicit null clears the classification.
        if "tipo_gasto" in data.model_fields_set:
            category.tipo_gasto = data.tipo_gasto
        self.session.commit()
        self.session.refresh(category)
        return category

    def archive(self, category_id: int) -> None:
        category = self.get(category_id)
        category.archived_at = datetime.utcnow()
        self.session.commit()

    def existing_ids(self, category_ids: Iterable[int]) -> set[int]:
        ids = set(category_ids)
        if not ids:
            return set()
        return set(
            self.session.scalars(select(Category.id).where(Category.id.in_(ids))).all()
        )

    def ensure_exist(self, category_ids: Iterable[int]) -> None:
        ids = _dedupe(category_ids)
        missing = sorted(set(ids) - self.existing_ids(ids))
        if missing:
            raise ValidationError(
                f"Unknown category ids: {', '.join(str(i) for i in missing)}"
            )


class SimulationService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Simulation]:
        stmt = select(Simulation).order_by(Simulation.updated_at.desc(), Simulation.id)
        return self.session.scalars(stmt).all()

    def get(self, simulation_id: int) -> Simulation:
        simulation = self.session.get(Simulation, simulation_id)
        if not simulation:
            raise NotFoundError("Simulation not found")
        return simulation

    def _ensure_unique(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Simulation).where(func.lower(Simulation.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Simulation.id != exclude_id)
        if self.session.scalar(stmt):
            raise ConflictError("Simulation with this name already exists")

    def create(self, data: SimulationIn) -> Simulation:
        name = _clean_name(data.name, "Simulation")
        self._ensure_unique(name)
        simulation = Simulation(name=name, description=data.description)
        self.session.add(simulation)
        self.session.commit()
        self.session.refresh(simulation)
        logger.info(f"simulation_created: simulation_id={simulation.id}")
        return simulation

    def update(self, simulation_id: int, data: SimulationUpdateIn) -> Simulation:
        simulation = self.get(simulation_id)
        if data.name is not None:
            name = _clean_name(data.name, "Simulation")
            self._ensure_unique(name, exclude_id=simulation_id)
            simulation.name = name
        if "description" in data.model_fields_set:
            simulation.description = data.description
        self.session.commit()
        self.session.refresh(simulation)
        return simulation

    def delete(self, simulation_id: int) -> None:
        simulation = self.get(simulation_id)
        self.session.delete(simulation)
        self.session.commit()
        logger.info(f"simulation_deleted: simulation_id={simulation_id}")

    def _copy_name(self, base: str) -> str:
        candidate = f"{base} (copy)"
        counter = 2
        while self.session.scalar(
            select(Simulation.id).where(
                func.lower(Simulation.name) == candidate.lower()
            )
        ):
            candidate = f"{base} (copy {counter})"
            counter += 1
        return candidate

    def copy(self, simulation_id: int, name: Optional[str] = None) -> Simulation:
        source = self.get(simulation_id)
        if name is not None:
            new_name = _clean_name(name, "Simulation")
            self._ensure_unique(new_name)
        else:
            new_name = self._copy_name(source.name)

        clone = Simulation(name=new_name, description=source.description)
        self.session.add(clone)
        self.session.flush()
        for income in source.incomes:
            clone.incomes.append(
                SimulationIncome(
                    description=income.description, amount_cents=income.amount_cents
                )
            )
        for budget in source.budgets:
            clone.budgets.append(
                SimulationBudget(
                    category_id=budget.category_id,
                    efectivo_cents=budget.efectivo_cents,
                    credito_cents=budget.credito_cents,
                    ahorro_efectivo_cents=budget.ahorro_efectivo_cents,
                    ahorro_credito_cents=budget.ahorro_credito_cents,
                    needs_adjustment=budget.needs_adjustment,
                )
            )
        for subgroup in source.subgroups:
            copy_sg = SimulationSubgroup(
                name=subgroup.name,
                display_order=subgroup.display_order,
                template_subgroup_id=subgroup.template_subgroup_id,
            )
            for index, category_id in enumerate(subgroup.category_ids):
                copy_sg.members.append(
                    SubgroupCategory(
                        simulation_id=clone.id,
                        category_id=category_id,
                        order_within_subgroup=index,
                    )
                )
            clone.subgroups.append(copy_sg)
        self.session.commit()
        self.session.refresh(clone)
        logger.info(
            f"simulation_copied: source_id={simulation_id} simulation_id={clone.id}"
        )
        return clone

    def touch(self, simulation: Simulation) -> None:
        simulation.updated_at = datetime.utcnow()

    def list_incomes(self, simulation_id: int) -> list[SimulationIncome]:
        return list(self.get(simulation_id).incomes)

    def add_income(
        self, simulation_id: int, data: SimulationIncomeIn
    ) -> SimulationIncome:
        simulation = self.get(simulation_id)
        income = SimulationIncome(
            simulation_id=simulation.id,
            description=data.description.strip(),
            amount_cents=data.amount_cents,
        )
        self.session.add(income)
        self.touch(simulation)
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete_income(self, simulation_id: int, income_id: int) -> None:
        income = self.session.get(SimulationIncome, income_id)
        if not income or income.simulation_id != simulation_id:
            raise NotFoundError("Income not found")
        self.session.delete(income)
        self.touch(self.get(simulation_id))
        self.session.commit()

    def total_income(self, simulation_id: int) -> int:
        self.get(simulation_id)
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(SimulationIncome.amount_cents), 0)).where(
                    SimulationIncome.simulation_id == simulation_id
                )
            ).scalar_one()
            or 0
        )


class SimulationBudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.simulations = SimulationService(session)

    def list_entries(self, simulation_id: int) -> list[SimulationBudget]:
        self.simulations.get(simulation_id)
        stmt = (
            select(SimulationBudget)
            .where(SimulationBudget.simulation_id == simulation_id)
            .order_by(SimulationBudget.category_id)
        )
        return self.session.scalars(stmt).all()

    def summary(self, simulation_id: int) -> dict[str, object]:
        entries = self.list_entries(simulation_id)
        active_ids = self.session.scalars(
            select(Category.id).where(Category.archived_at.is_(None))
        ).all()
        configured = {e.category_id for e in entries}
        missing = sorted(set(active_ids) - configured)
        return {
            "total_categories": len(active_ids),
            "configured_categories": len(configured & set(active_ids)),
            "missing_category_ids": missing,
        }

    def save_entries(
        self, simulation_id: int, entries: list[BudgetEntryIn]
    ) -> list[SimulationBudget]:
        simulation = self.simulations.get(simulation_id)
        CategoryService(self.session).ensure_exist(e.category_id for e in entries)

        existing = {
            b.category_id: b
            for b in self.session.scalars(
                select(SimulationBudget).where(
                    SimulationBudget.simulation_id == simulation_id
                )
            ).all()
        }
        for data in entries:
            budget = existing.get(data.category_id)
            if budget is None:
                budget = SimulationBudget(
                    simulation_id=simulation_id, category_id=data.category_id
                )
                self.session.add(budget)
                existing[data.category_id] = budget
            budget.efectivo_cents = data.efectivo_cents
            budget.credito_cents = data.credito_cents
            budget.ahorro_efectivo_cents = data.ahorro_efectivo_cents
            budget.ahorro_credito_cents = data.ahorro_credito_cents
            budget.needs_adjustment = data.needs_adjustment
        self.simulations.touch(simulation)
        self.session.commit()
        logger.info(
            f"budgets_saved: simulation_id={simulation_id} count={len(entries)}"
        )
        return self.list_entries(simulation_id)


class SubgroupService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.simulations = SimulationService(session)

    def list_for_simulation(self, simulation_id: int) -> list[SimulationSubgroup]:
        self.simulations.get(simulation_id)
        stmt = (
            select(SimulationSubgroup)
            .options(selectinload(SimulationSubgroup.members))
            .where(SimulationSubgroup.simulation_id == simulation_id)
            .order_by(SimulationSubgroup.display_order, SimulationSubgroup.created_at)
        )
        return self.session.scalars(stmt).all()

    def get(self, simulation_id: int, subgroup_id: str) -> SimulationSubgroup:
        subgroup = self.session.get(SimulationSubgroup, subgroup_id)
        if not subgroup or subgroup.simulation_id != simulation_id:
            raise NotFoundError("Sub-group not found")
        return subgroup

    def _ensure_unique_name(
        self, simulation_id: int, name: str, exclude_id: Optional[str] = None
    ) -> None:
        stmt = select(SimulationSubgroup.id).where(
            SimulationSubgroup.simulation_id == simulation_id,
            func.lower(SimulationSubgroup.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(SimulationSubgroup.id != exclude_id)
        if self.session.scalar(stmt):
            raise ConflictError(f'Sub-group "{name}" already exists in this simulation')

    def _ensure_disjoint(
        self,
        simulation_id: int,
        category_ids: list[int],
        exclude_id: Optional[str] = None,
    ) -> None:
        if not category_ids:
            return
        stmt = select(SubgroupCategory.category_id).where(
            SubgroupCategory.simulation_id == simulation_id,
            SubgroupCategory.category_id.in_(category_ids),
        )
        if exclude_id is not None:
            stmt = stmt.where(SubgroupCategory.subgroup_id != exclude_id)
        taken = sorted(set(self.session.scalars(stmt).all()))
        if taken:
            raise ConflictError(
                "Categories already belong to another sub-group: "
                + ", ".join(str(i) for i in taken)
            )

    def _replace_members(
        self, subgroup: SimulationSubgroup, category_ids: list[int]
    ) -> None:
        subgroup.members.clear()
        # Old rows must be gone before new ones hit the unique constraint.
        self.session.flush()
        for index, category_id in enumerate(category_ids):
            subgroup.members.append(
                SubgroupCategory(
                    simulation_id=subgroup.simulation_id,
                    category_id=category_id,
                    order_within_subgroup=index,
                )
            )

    def _commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(
                "A category can belong to only one sub-group per simulation"
            ) from exc

    def create(self, simulation_id: int, data: SubgroupCreateIn) -> SimulationSubgroup:
        simulation = self.simulations.get(simulation_id)
        name = _clean_name(data.name, "Sub-group")
        category_ids = _dedupe(data.category_ids)
        if not category_ids:
            raise ValidationError("Sub-group must contain at least one category")
        self._ensure_unique_name(simulation_id, name)
        CategoryService(self.session).ensure_exist(category_ids)
        self._ensure_disjoint(simulation_id, category_ids)

        max_order = self.session.scalar(
            select(func.max(SimulationSubgroup.display_order)).where(
                SimulationSubgroup.simulation_id == simulation_id
            )
        )
        subgroup = SimulationSubgroup(
            simulation_id=simulation_id,
            name=name,
            display_order=(max_order + 1) if max_order is not None else 0,
        )
        self.session.add(subgroup)
        self.session.flush()
        self._replace_members(subgroup, category_ids)
        self.simulations.touch(simulation)
        self._commit()
        self.session.refresh(subgroup)
        logger.info(
            f"subgroup_created: simulation_id={simulation_id} "
            f"subgroup_id={subgroup.id} categories={len(category_ids)}"
        )
        return subgroup

    def update(
        self, simulation_id: int, subgroup_id: str, data: SubgroupUpdateIn
    ) -> SimulationSubgroup:
        subgroup = self.get(simulation_id, subgroup_id)
        if data.name is not None:
            name = _clean_name(data.name, "Sub-group")
            self._ensure_unique_name(simulation_id, name, exclude_id=subgroup_id)
            subgroup.name = name
        if data.category_ids is not None:
            category_ids = _dedupe(data.category_ids)
            CategoryService(self.session).ensure_exist(category_ids)
            self._ensure_disjoint(simulation_id, category_ids, exclude_id=subgroup_id)
            self._replace_members(subgroup, category_ids)
        if data.display_order is not None:
            subgroup.display_order = data.display_order
        self.simulations.touch(self.simulations.get(simulation_id))
        self._commit()
        self.session.refresh(subgroup)
        logger.info(
            f"subgroup_updated: simulation_id={simulation_id} subgroup_id={subgroup_id}"
        )
        return subgroup

    def delete(self, simulation_id: int, subgroup_id: str) -> None:
        subgroup = self.get(simulation_id, subgroup_id)
        self.session.delete(subgroup)
        self.simulations.touch(self.simulations.get(simulation_id))
        self.session.commit()
        logger.info(
            f"subgroup_deleted: simulation_id={simulation_id} subgroup_id={subgroup_id}"
        )


class SubgroupTemplateService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.simulations = SimulationService(session)

    def list_all(self) -> list[SubgroupTemplate]:
        stmt = (
            select(SubgroupTemplate)
            .options(
                selectinload(SubgroupTemplate.subgroups).selectinload(
                    TemplateSubgroup.categories
                )
            )
            .order_by(func.lower(SubgroupTemplate.name))
        )
        return self.session.scalars(stmt).all()

    def get(self, template_id: str) -> SubgroupTemplate:
        template = self.session.get(SubgroupTemplate, template_id)
        if not template:
            raise NotFoundError("Template not found")
        return template

    def _ensure_unique(self, name: str, exclude_id: Optional[str] = None) -> None:
        stmt = select(SubgroupTemplate.id).where(
            func.lower(SubgroupTemplate.name) == name.lower()
        )
        if exclude_id is not None:
            stmt = stmt.where(SubgroupTemplate.id != exclude_id)
        if self.session.scalar(stmt):
            raise ConflictError("Template with this name already exists")

    def _validate_layout(self, layout: list[tuple[str, list[int]]]) -> None:
        if not layout:
            raise ValidationError("Template must contain at least one sub-group")
        names = [name.lower() for name, _ in layout]
        if len(set(names)) != len(names):
            raise ValidationError("Template sub-group names must be unique")
        seen: set[int] = set()
        for _, category_ids in layout:
            overlap = seen & set(category_ids)
            if overlap:
                raise ConflictError(
                    "Categories appear in more than one template sub-group: "
                    + ", ".join(str(i) for i in sorted(overlap))
                )
            seen.update(category_ids)
        CategoryService(self.session).ensure_exist(seen)

    def _set_layout(
        self, template: SubgroupTemplate, layout: list[tuple[str, list[int]]]
    ) -> None:
        template.subgroups.clear()
        self.session.flush()
        for order, (name, category_ids) in enumerate(layout):
            tsg = TemplateSubgroup(name=name, display_order=order)
            for index, category_id in enumerate(category_ids):
                tsg.categories.append(
                    TemplateCategory(category_id=category_id, order_within_subgroup=index)
                )
            template.subgroups.append(tsg)

    def _layout_from_simulation(self, simulation_id: int) -> list[tuple[str, list[int]]]:
        subgroups = SubgroupService(self.session).list_for_simulation(simulation_id)
        if not subgroups:
            raise ValidationError("Simulation has no sub-groups to save")
        return [(sg.name, list(sg.category_ids)) for sg in subgroups]

    def create(self, data: TemplateIn) -> SubgroupTemplate:
        name = _clean_name(data.name, "Template")
        self._ensure_unique(name)
        layout = [
            (_clean_name(sg.name, "Sub-group"), _dedupe(sg.category_ids))
            for sg in data.subgroups
        ]
        self._validate_layout(layout)
        template = SubgroupTemplate(name=name, description=data.description)
        self.session.add(template)
        self._set_layout(template, layout)
        self.session.commit()
        self.session.refresh(template)
        logger.info(
            f"template_created: template_id={template.id} subgroups={len(layout)}"
        )
        return template

    def update(self, template_id: str, data: TemplateUpdateIn) -> SubgroupTemplate:
        template = self.get(template_id)
        if data.name is not None:
            name = _clean_name(data.name, "Template")
            self._ensure_unique(name, exclude_id=template_id)
            template.name = name
        if "description" in data.model_fields_set:
            template.description = data.description
        self.session.commit()
        self.session.refresh(template)
        return template

    def delete(self, template_id: str) -> None:
        template = self.get(template_id)
        self.session.execute(
            update(SimulationSubgroup)
            .where(
                SimulationSubgroup.template_subgroup_id.in_(
                    select(TemplateSubgroup.id).where(
                        TemplateSubgroup.template_id == template_id
                    )
                )
            )
            .values(template_subgroup_id=None)
        )
        self.session.execute(
            update(SimulationAppliedTemplate)
            .where(SimulationAppliedTemplate.template_id == template_id)
            .values(template_id=None)
        )
        self.session.delete(template)
        self.session.commit()
        logger.info(f"template_deleted: template_id={template_id}")

    def apply(self, simulation_id: int, template_id: str) -> list[SimulationSubgroup]:
        """Replace the simulation's sub-groups with the template layout.

        Archived or deleted categories are skipped; a template sub-group that
        ends up without members is still created.
        """
        simulation = self.simulations.get(simulation_id)
        template = self.get(template_id)
        active_ids = set(
            self.session.scalars(
                select(Category.id).where(Category.archived_at.is_(None))
            ).all()
        )

        simulation.subgroups.clear()
        self.session.flush()
        for tsg in template.subgroups:
            subgroup = SimulationSubgroup(
                name=tsg.name,
                display_order=tsg.display_order,
                template_subgroup_id=tsg.id,
            )
            for index, category_id in enumerate(
                cid for cid in tsg.category_ids if cid in active_ids
            ):
                subgroup.members.append(
                    SubgroupCategory(
                        simulation_id=simulation_id,
                        category_id=category_id,
                        order_within_subgroup=index,
                    )
                )
            simulation.subgroups.append(subgroup)

        applied = self.session.get(SimulationAppliedTemplate, simulation_id)
        if applied is None:
            applied = SimulationAppliedTemplate(simulation_id=simulation_id)
            self.session.add(applied)
        applied.template_id = template.id
        applied.applied_at = datetime.utcnow()
        self.simulations.touch(simulation)
        self.session.commit()
        logger.info(
            f"template_applied: simulation_id={simulation_id} template_id={template_id}"
        )
        return SubgroupService(self.session).list_for_simulation(simulation_id)

    def applied_template(self, simulation_id: int) -> Optional[SimulationAppliedTemplate]:
        self.simulations.get(simulation_id)
        return self.session.get(SimulationAppliedTemplate, simulation_id)

    def save_from_simulation(
        self, simulation_id: int, data: SaveAsTemplateIn
    ) -> SubgroupTemplate:
        layout = self._layout_from_simulation(simulation_id)
        name = _clean_name(data.name, "Template")
        self._ensure_unique(name)
        template = SubgroupTemplate(name=name, description=data.description)
        self.session.add(template)
        self._set_layout(template, layout)
        self.session.commit()
        self.session.refresh(template)
        logger.info(
            f"template_saved: simulation_id={simulation_id} template_id={template.id}"
        )
        return template

    def refresh(self, template_id: str, simulation_id: int) -> SubgroupTemplate:
        template = self.get(template_id)
        layout = self._layout_from_simulation(simulation_id)
        self._set_layout(template, layout)
        template.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(template)
        logger.info(
            f"template_refreshed: template_id={template_id} "
            f"simulation_id={simulation_id}"
        )
        return template


class SimulationTableService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def state(
        self, simulation_id: int, options: Optional[TableViewOptions] = None
    ) -> TableState:
        options = options or TableViewOptions()
        simulations = SimulationService(self.session)
        categories = CategoryService(self.session).list_all()
        budgets = SimulationBudgetService(self.session).list_entries(simulation_id)
        subgroups = SubgroupService(self.session).list_for_simulation(simulation_id)
        return TableState(
            categories=[
                TableCategory(id=str(c.id), name=c.name, tipo_gasto=c.tipo_gasto)
                for c in categories
            ],
            subgroups=[
                TableSubgroup(
                    id=sg.id,
                    name=sg.name,
                    category_ids=tuple(str(cid) for cid in sg.category_ids),
                    display_order=sg.display_order,
                )
                for sg in subgroups
            ],
            entries={
                str(b.category_id): BudgetEntry(
                    efectivo=b.efectivo_cents,
                    credito=b.credito_cents,
                    ahorro_efectivo=b.ahorro_efectivo_cents,
                    ahorro_credito=b.ahorro_credito_cents,
                    needs_adjustment=b.needs_adjustment,
                )
                for b in budgets
            },
            total_income=simulations.total_income(simulation_id),
            category_order=list(options.category_order),
            subgroup_order=list(options.subgroup_order),
            hidden={key: True for key in options.hidden},
            excluded=set(options.excluded),
            expanded=set(options.expanded),
            sort=SortSpec(
                by=options.sort_field,
                tipo_gasto_state=options.tipo_gasto_sort_state,
                direction=options.sort_direction,
            ),
            hide_empty=options.hide_empty,
        )

    def view(
        self, simulation_id: int, options: Optional[TableViewOptions] = None
    ) -> TableView:
        return build_table_view(self.state(simulation_id, options))

    def export_csv(
        self, simulation_id: int, options: Optional[TableViewOptions] = None
    ) -> str:
        state = self.state(simulation_id, options)
        # Every sub-group is expanded so each category gets its own line.
        state.expanded = {sg.id for sg in state.subgroups}
        return export_simulation(state, build_table_view(state))


class InterestRateScenarioService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[InterestRateScenario]:
        stmt = select(InterestRateScenario).order_by(
            InterestRateScenario.created_at.desc(), InterestRateScenario.id.desc()
        )
        return self.session.scalars(stmt).all()

    def create(self, data: InterestRateScenarioIn) -> InterestRateScenario:
        scenario = InterestRateScenario(
            name=_clean_name(data.name, "Scenario"),
            input_rate_micros=rate_to_micros(Decimal(str(data.input_rate))),
            input_rate_type=data.input_rate_type,
            notes=data.notes,
        )
        self.session.add(scenario)
        self.session.commit()
        self.session.refresh(scenario)
        return scenario

    def delete(self, scenario_id: int) -> None:
        scenario = self.session.get(InterestRateScenario, scenario_id)
        if not scenario:
            raise NotFoundError("Scenario not found")
        self.session.delete(scenario)
        self.session.commit()

    @staticmethod
    def input_rate(scenario: InterestRateScenario) -> Decimal:
        return micros_to_rate(scenario.input_rate_micros)
