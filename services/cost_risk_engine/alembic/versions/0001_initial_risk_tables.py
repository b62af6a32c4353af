"""initial risk tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = "risk"
CONFIDENCE = sa.Enum("low", "medium", "high", name="confidence_level", native_enum=False)


def upgrade() -> None:
    op.create_table(
        "contract_cost_observations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "contract_id",
            sa.Integer(),
            sa.ForeignKey("service_contracts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("observation_date", sa.DateTime(), nullable=False),
        sa.Column("ceiling_value", sa.Float(), nullable=False),
        sa.Column("obligation_value", sa.Float(), nullable=False),
        sa.Column("ratio", sa.Float(), nullable=False),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_cost_observations_contract_date",
        "contract_cost_observations",
        ["contract_id", "observation_date"],
        schema=SCHEMA,
    )

    op.create_table(
        "volatility_parameters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("psc_code", sa.String(16), nullable=False),
        sa.Column("agency_code", sa.String(255), nullable=True),
        sa.Column("sigma", sa.Float(), nullable=False),
        sa.Column("observation_count", sa.Integer(), nullable=False),
        sa.Column("confidence_level", CONFIDENCE, nullable=False),
        sa.Column("last_calculated", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("psc_code", "agency_code", name="uq_volatility_psc_agency"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_risk_volatility_parameters_psc_code",
        "volatility_parameters",
        ["psc_code"],
        schema=SCHEMA,
    )

    op.create_table(
        "contract_risk_scores",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "contract_id",
            sa.Integer(),
            sa.ForeignKey("service_contracts.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("current_ratio", sa.Float(), nullable=False),
        sa.Column("implied_volatility", sa.Float(), nullable=False),
        sa.Column("lifecycle_stage", sa.Integer(), nullable=False),
        sa.Column("lifecycle_multiplier", sa.Float(), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=False),
        sa.Column("expected_cost_low", sa.Float(), nullable=True),
        sa.Column("expected_cost_mid", sa.Float(), nullable=True),
        sa.Column("expected_cost_high", sa.Float(), nullable=True),
        sa.Column("ceiling_breach_prob", sa.Float(), nullable=False),
        sa.Column("months_to_warning", sa.Integer(), nullable=True),
        sa.Column("confidence_level", CONFIDENCE, nullable=False),
        sa.Column("calculated_at", sa.DateTime(), nullable=False),
        schema=SCHEMA,
    )
    op.create_index("ix_contract_risk_scores_score", "contract_risk_scores", ["risk_score"], schema=SCHEMA)
    op.create_index(
        "ix_risk_contract_risk_scores_calculated_at",
        "contract_risk_scores",
        ["calculated_at"],
        schema=SCHEMA,
    )


def downgrade() -> None:
    op.drop_table("contract_risk_scores", schema=SCHEMA)
    op.drop_table("volatility_parameters", schema=SCHEMA)
    op.drop_table("contract_cost_observations", schema=SCHEMA)
