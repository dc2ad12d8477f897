from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import RateType, TipoGasto


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    tipo_gasto: Optional[TipoGasto] = None


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    tipo_gasto: Optional[TipoGasto] = None


class SimulationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)


class SimulationUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)


class SimulationCopyIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)


class SimulationIncomeIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)


class BudgetEntryIn(BaseModel):
    category_id: int
    efectivo_cents: int = Field(default=0, ge=0)
    credito_cents: int = Field(default=0, ge=0)
    ahorro_efectivo_cents: int = Field(default=0, ge=0)
    ahorro_credito_cents: int = Field(default=0, ge=0)
    needs_adjustment: bool = False


class BudgetBatchIn(BaseModel):
    entries: list[BudgetEntryIn] = Field(default_factory=list)


class SubgroupCreateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., max_length=100)
    category_ids: list[int] = Field(default_factory=list)


class SubgroupUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, max_length=100)
    category_ids: Optional[list[int]] = None
    display_order: Optional[int] = Field(default=None, ge=0)


class TemplateSubgroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category_ids: list[int] = Field(default_factory=list)


class TemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)
    subgroups: list[TemplateSubgroupIn] = Field(default_factory=list)


class TemplateUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)


class ApplyTemplateIn(BaseModel):
    template_id: str


class SaveAsTemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=1000)


class RefreshTemplateIn(BaseModel):
    simulation_id: int


class RateConvertIn(BaseModel):
    rate: float = Field(..., ge=0, le=10)
    rate_type: RateType


class InterestRateScenarioIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    input_rate: float = Field(..., ge=0, le=10)
    input_rate_type: RateType
    notes: Optional[str] = Field(default=None, max_length=2000)


class TableViewOptions(BaseModel):
    """Client display state sent to the server-side table renderer."""

    sort_field: Optional[Literal["tipo_gasto", "name"]] = None
    tipo_gasto_sort_state: int = Field(default=1, ge=0, le=2)
    sort_direction: Literal["asc", "desc"] = "asc"
    category_order: list[str] = Field(default_factory=list)
    subgroup_order: list[str] = Field(default_factory=list)
    excluded: list[str] = Field(default_factory=list)
    hidden: list[str] = Field(default_factory=list)
    expanded: list[str] = Field(default_factory=list)
    hide_empty: bool = False

    @model_validator(mode="after")
    def _ids_are_strings(self) -> "TableViewOptions":
        for values in (
            self.category_order,
            self.subgroup_order,
            self.excluded,
            self.hidden,
            self.expanded,
        ):
            if any(not value.strip() for value in values):
                raise ValueError("Identifiers cannot be blank")
        return self
