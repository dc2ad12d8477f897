import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TipoGasto(str, Enum):
    fijo = "F"
    semi_fijo = "SF"
    variable = "V"
    eventual = "E"


TIPO_GASTO_ENUM = SAEnum(
    TipoGasto,
    name="tipogasto",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class RateType(str, Enum):
    ea = "EA"
    em = "EM"
    ed = "ED"
    nm = "NM"
    na = "NA"


RATE_TYPE_ENUM = SAEnum(
    RateType,
    name="ratetype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


def _uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    tipo_gasto: Mapped[Optional[TipoGasto]] = mapped_column(TIPO_GASTO_ENUM)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class Simulation(Base, TimestampMixin):
    __tablename__ = "simulations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)

    budgets: Mapped[list["SimulationBudget"]] = relationship(
        "SimulationBudget",
        back_populates="simulation",
        cascade="all, delete-orphan",
    )
    incomes: Mapped[list["SimulationIncome"]] = relationship(
        "SimulationIncome",
        back_populates="simulation",
        cascade="all, delete-orphan",
        order_by="SimulationIncome.id",
    )
    subgroups: Mapped[list["SimulationSubgroup"]] = relationship(
        "SimulationSubgroup",
        back_populates="simulation",
        cascade="all, delete-orphan",
        order_by="SimulationSubgroup.display_order",
    )
    applied_template: Mapped[Optional["SimulationAppliedTemplate"]] = relationship(
        "SimulationAppliedTemplate",
        back_populates="simulation",
        cascade="all, delete-orphan",
        uselist=False,
    )


class SimulationIncome(Base, TimestampMixin):
    __tablename__ = "simulation_incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    simulation_id: Mapped[int] = mapped_column(
        ForeignKey("simulations.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    simulation: Mapped["Simulation"] = relationship(
        "Simulation", back_populates="incomes"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_sim_income_amount_positive"),
        Index("ix_sim_income_simulation", "simulation_id"),
    )


class SimulationBudget(Base, TimestampMixin):
    __tablename__ = "simulation_budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    simulation_id: Mapped[int] = mapped_column(
        ForeignKey("simulations.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    efectivo_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credito_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ahorro_efectivo_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    ahorro_credito_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    needs_adjustment: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    simulation: Mapped["Simulation"] = relationship(
        "Simulation", back_populates="budgets"
    )
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "simulation_id", "category_id", name="uq_sim_budget_simulation_category"
        ),
        CheckConstraint(
            "efectivo_cents >= 0 AND credito_cents >= 0 "
            "AND ahorro_efectivo_cents >= 0 AND ahorro_credito_cents >= 0",
            name="ck_sim_budget_amounts_positive",
        ),
    )


class SimulationSubgroup(Base, TimestampMixin):
    __tablename__ = "simulation_subgroups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    simulation_id: Mapped[int] = mapped_column(
        ForeignKey("simulations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    template_subgroup_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("template_subgroups.id", ondelete="SET NULL")
    )

    simulation: Mapped["Simulation"] = relationship(
        "Simulation", back_populates="subgroups"
    )
    members: Mapped[list["SubgroupCategory"]] = relationship(
        "SubgroupCategory",
        back_populates="subgroup",
        cascade="all, delete-orphan",
        order_by="SubgroupCategory.order_within_subgroup",
    )

    @property
    def category_ids(self) -> list[int]:
        return [m.category_id for m in self.members]

    __table_args__ = (
        Index("ix_sim_subgroup_simulation_order", "simulation_id", "display_order"),
    )


class SubgroupCategory(Base):
    __tablename__ = "subgroup_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subgroup_id: Mapped[str] = mapped_column(
        ForeignKey("simulation_subgroups.id", ondelete="CASCADE"), nullable=False
    )
    simulation_id: Mapped[int] = mapped_column(
        ForeignKey("simulations.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    order_within_subgroup: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    subgroup: Mapped["SimulationSubgroup"] = relationship(
        "SimulationSubgroup", back_populates="members"
    )

    __table_args__ = (
        # A category belongs to at most one sub-group per simulation.
        UniqueConstraint(
            "simulation_id", "category_id", name="uq_subgroup_category_simulation"
        ),
    )


class SubgroupTemplate(Base, TimestampMixin):
    __tablename__ = "subgroup_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)

    subgroups: Mapped[list["TemplateSubgroup"]] = relationship(
        "TemplateSubgroup",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateSubgroup.display_order",
    )


class TemplateSubgroup(Base):
    __tablename__ = "template_subgroups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    template_id: Mapped[str] = mapped_column(
        ForeignKey("subgroup_templates.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    template: Mapped["SubgroupTemplate"] = relationship(
        "SubgroupTemplate", back_populates="subgroups"
    )
    categories: Mapped[list["TemplateCategory"]] = relationship(
        "TemplateCategory",
        back_populates="template_subgroup",
        cascade="all, delete-orphan",
        order_by="TemplateCategory.order_within_subgroup",
    )

    @property
    def category_ids(self) -> list[int]:
        return [c.category_id for c in self.categories]


class TemplateCategory(Base):
    __tablename__ = "template_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_subgroup_id: Mapped[str] = mapped_column(
        ForeignKey("template_subgroups.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    order_within_subgroup: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    template_subgroup: Mapped["TemplateSubgroup"] = relationship(
        "TemplateSubgroup", back_populates="categories"
    )


class SimulationAppliedTemplate(Base):
    __tablename__ = "simulation_applied_templates"

    simulation_id: Mapped[int] = mapped_column(
        ForeignKey("simulations.id", ondelete="CASCADE"), primary_key=True
    )
    template_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("subgroup_templates.id", ondelete="SET NULL")
    )
    applied_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    simulation: Mapped["Simulation"] = relationship(
        "Simulation", back_populates="applied_template"
    )
    template: Mapped[Optional["SubgroupTemplate"]] = relationship("SubgroupTemplate")


class InterestRateScenario(Base, TimestampMixin):
    __tablename__ = "interest_rate_scenarios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    input_rate_micros: Mapped[int] = mapped_column(Integer, nullable=False)
    input_rate_type: Mapped[RateType] = mapped_column(RATE_TYPE_ENUM, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "input_rate_micros >= 0", name="ck_rate_scenario_rate_positive"
        ),
    )
