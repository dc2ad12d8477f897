"""initial budget simulator schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column(
            "tipo_gasto", sa.Enum("F", "SF", "V", "E", name="tipogasto"), nullable=True
        ),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "simulations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "simulation_incomes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "simulation_id",
            sa.Integer(),
            sa.ForeignKey("simulations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_sim_income_amount_positive"),
    )
    op.create_index("ix_sim_income_simulation", "simulation_incomes", ["simulation_id"])

    op.create_table(
        "simulation_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "simulation_id",
            sa.Integer(),
            sa.ForeignKey("simulations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("efectivo_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credito_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "ahorro_efectivo_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "ahorro_credito_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "needs_adjustment", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "simulation_id", "category_id", name="uq_sim_budget_simulation_category"
        ),
        sa.CheckConstraint(
            "efectivo_cents >= 0 AND credito_cents >= 0 "
            "AND ahorro_efectivo_cents >= 0 AND ahorro_credito_cents >= 0",
            name="ck_sim_budget_amounts_positive",
        ),
    )

    op.create_table(
        "subgroup_templates",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "template_subgroups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "template_id",
            sa.String(length=36),
            sa.ForeignKey("subgroup_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "template_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_subgroup_id",
            sa.String(length=36),
            sa.ForeignKey("template_subgroups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "order_within_subgroup", sa.Integer(), nullable=False, server_default="0"
        ),
    )

    op.create_table(
        "simulation_subgroups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "simulation_id",
            sa.Integer(),
            sa.ForeignKey("simulations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "template_subgroup_id",
            sa.String(length=36),
            sa.ForeignKey("template_subgroups.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_sim_subgroup_simulation_order",
        "simulation_subgroups",
        ["simulation_id", "display_order"],
    )

    op.create_table(
        "subgroup_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "subgroup_id",
            sa.String(length=36),
            sa.ForeignKey("simulation_subgroups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "simulation_id",
            sa.Integer(),
            sa.ForeignKey("simulations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "order_within_subgroup", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.UniqueConstraint(
            "simulation_id", "category_id", name="uq_subgroup_category_simulation"
        ),
    )

    op.create_table(
        "simulation_applied_templates",
        sa.Column(
            "simulation_id",
            sa.Integer(),
            sa.ForeignKey("simulations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "template_id",
            sa.String(length=36),
            sa.ForeignKey("subgroup_templates.id", ondelete="SET NULL"),
        ),
        sa.Column("applied_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "interest_rate_scenarios",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("input_rate_micros", sa.Integer(), nullable=False),
        sa.Column(
            "input_rate_type",
            sa.Enum("EA", "EM", "ED", "NM", "NA", name="ratetype"),
            nullable=False,
        ),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint(
            "input_rate_micros >= 0", name="ck_rate_scenario_rate_positive"
        ),
    )


def downgrade():
    op.drop_table("interest_rate_scenarios")
    op.drop_table("simulation_applied_templates")
    op.drop_table("subgroup_categories")
    op.drop_index("ix_sim_subgroup_simulation_order", table_name="simulation_subgroups")
    op.drop_table("simulation_subgroups")
    op.drop_table("template_categories")
    op.drop_table("template_subgroups")
    op.drop_table("subgroup_templates")
    op.drop_table("simulation_budgets")
    op.drop_index("ix_sim_income_simulation", table_name="simulation_incomes")
    op.drop_table("simulation_incomes")
    op.drop_table("simulations")
    op.drop_table("categories")
