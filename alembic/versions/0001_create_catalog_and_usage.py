"""create catalog, hospital embedding and usage tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy import text
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Must match medifly.infra.db.models.EMBEDDING_DIMENSIONS
EMBEDDING_DIMENSIONS = 1536

# model_name, input $/1k, output $/1k
COST_RATES = (
    ("gpt-4", 0.03, 0.06),
    ("gpt-4-turbo", 0.01, 0.03),
    ("gpt-4o", 0.0025, 0.01),
    ("gpt-4o-mini", 0.00015, 0.0006),
    ("gpt-3.5-turbo", 0.0005, 0.0015),
    ("claude-3-opus", 0.015, 0.075),
    ("claude-3-sonnet", 0.003, 0.015),
    ("claude-3-haiku", 0.00025, 0.00125),
    ("gemini-pro", 0.0005, 0.0015),
)

FIND_SIMILAR_HOSPITALS = """
CREATE OR REPLACE FUNCTION find_similar_hospitals(
    target_hospital_id uuid,
    similarity_threshold double precision DEFAULT 0.75,
    result_limit integer DEFAULT 10
)
RETURNS TABLE (
    id uuid,
    name varchar,
    city varchar,
    state varchar,
    type varchar,
    similarity_score double precision
)
LANGUAGE sql STABLE
AS $$
    SELECT h.id, h.name, h.city, h.state, h.type,
           1 - (h.embedding <=> t.embedding) AS similarity_score
    FROM hospitals h, hospitals t
    WHERE t.id = target_hospital_id
      AND t.embedding IS NOT NULL
      AND h.id <> t.id
      AND h.is_active
      AND h.embedding IS NOT NULL
      AND 1 - (h.embedding <=> t.embedding) >= similarity_threshold
    ORDER BY h.embedding <=> t.embedding
    LIMIT result_limit
$$;
"""


def _id() -> sa.Column:
    return sa.Column(
        "id",
        sa.Uuid(),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _flag(name: str, default: bool) -> sa.Column:
    return sa.Column(
        name, sa.Boolean(), server_default=sa.true() if default else sa.false(), nullable=False
    )


def _fk(name: str, target: str, *, nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(
        name, sa.Uuid(), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable
    )


def upgrade() -> None:
    op.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    op.execute(text("CREATE EXTENSION IF NOT EXISTS pgcrypto"))

    # -- hospitals and facilities ----------------------------------------------
    op.create_table(
        "hospitals",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("website", sa.String(500)),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("state", sa.String(100), nullable=False),
        sa.Column("zip_code", sa.String(20), nullable=False),
        sa.Column("country", sa.String(100), server_default="US", nullable=False),
        sa.Column("latitude", sa.Float()),
        sa.Column("longitude", sa.Float()),
        sa.Column("type", sa.String(30), server_default="GENERAL", nullable=False),
        sa.Column("bed_count", sa.Integer()),
        sa.Column("established", sa.Integer()),
        _flag("emergency_services", False),
        sa.Column("trauma_level", sa.String(10)),
        sa.Column("logo", sa.String(500)),
        sa.Column("images", postgresql.JSONB()),
        sa.Column("virtual_tour", sa.String(500)),
        sa.Column("rating", sa.Float()),
        sa.Column("review_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("operating_hours", postgresql.JSONB()),
        _flag("is_active", True),
        _flag("is_verified", False),
        _flag("is_featured", False),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS)),
        sa.Column("embedding_metadata", postgresql.JSONB()),
        sa.Column("embedding_updated_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_hospitals"),
        sa.UniqueConstraint("slug", name="uq_hospitals_slug"),
    )
    op.create_index("ix_hospitals_city", "hospitals", ["city"])
    op.create_index(
        "ix_hospitals_is_active_created_at", "hospitals", ["is_active", "created_at"]
    )
    op.execute(
        text(
            "CREATE INDEX ix_hospitals_embedding_hnsw ON hospitals "
            "USING hnsw (embedding vector_cosine_ops)"
        )
    )

    op.create_table(
        "facilities",
        _id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("icon", sa.String(50)),
        sa.Column("category", sa.String(30), server_default="OTHER", nullable=False),
        _flag("is_available", True),
        sa.Column("capacity", sa.Integer()),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_facilities"),
    )

    op.create_table(
        "hospital_facilities",
        _id(),
        _fk("hospital_id", "hospitals.id"),
        _fk("facility_id", "facilities.id"),
        _flag("primary_hospital", False),
        sa.Column("access_level", sa.String(20), server_default="FULL", nullable=False),
        sa.Column(
            "cost_sharing_percentage", sa.Float(), server_default="100", nullable=False
        ),
        sa.Column("notes", sa.Text()),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_hospital_facilities"),
    )
    op.create_index(
        "uq_hospital_facilities_hospital_facility",
        "hospital_facilities",
        ["hospital_id", "facility_id"],
        unique=True,
    )

    # -- specialties and doctors -----------------------------------------------
    op.create_table(
        "specialties",
        _id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("code", sa.String(20)),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(30), server_default="MEDICAL", nullable=False),
        sa.Column("color_code", sa.String(7)),
        sa.Column("icon", sa.String(50)),
        sa.Column("sort_order", sa.Integer(), server_default="0", nullable=False),
        _flag("requires_certification", False),
        sa.Column("avg_consultation_duration_minutes", sa.Integer()),
        _flag("is_active", True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_specialties"),
        sa.UniqueConstraint("name", name="uq_specialties_name"),
    )

    op.create_table(
        "doctors",
        _id(),
        sa.Column("first_name", sa.String(50), nullable=False),
        sa.Column("last_name", sa.String(50), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("title", sa.String(50)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("license_number", sa.String(50), nullable=False),
        sa.Column("gender", sa.String(20)),
        sa.Column("years_of_experience", sa.Integer(), server_default="0", nullable=False),
        sa.Column("biography", sa.Text()),
        sa.Column("education", postgresql.JSONB()),
        sa.Column(
            "languages",
            postgresql.JSONB(),
            server_default=sa.text("'[\"English\"]'::jsonb"),
            nullable=False,
        ),
        sa.Column("consultation_fee", sa.Float()),
        sa.Column(
            "consultation_duration_minutes", sa.Integer(), server_default="30", nullable=False
        ),
        sa.Column("profile_image", sa.String(500)),
        _flag("is_accepting_new_patients", True),
        _flag("is_telehealth_available", False),
        _flag("is_active", True),
        _flag("is_verified", False),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_doctors"),
        sa.UniqueConstraint("slug", name="uq_doctors_slug"),
    )

    op.create_table(
        "doctor_hospitals",
        _id(),
        _fk("doctor_id", "doctors.id"),
        _fk("hospital_id", "hospitals.id"),
        _flag("is_primary", False),
        sa.Column("position_title", sa.String(100)),
        sa.Column("department", sa.String(100)),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        _flag("is_active", True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_doctor_hospitals"),
    )
    op.create_index("ix_doctor_hospitals_hospital_id", "doctor_hospitals", ["hospital_id"])

    op.create_table(
        "doctor_specialties",
        _id(),
        _fk("doctor_id", "doctors.id"),
        _fk("specialty_id", "specialties.id"),
        _flag("is_primary", False),
        sa.Column("years_in_specialty", sa.Integer()),
        _flag("board_certified", False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_doctor_specialties"),
    )
    op.create_index(
        "uq_doctor_specialties_doctor_specialty",
        "doctor_specialties",
        ["doctor_id", "specialty_id"],
        unique=True,
    )

    # -- treatments ------------------------------------------------------------
    op.create_table(
        "treatments",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        _fk("hospital_id", "hospitals.id"),
        _fk("doctor_id", "doctors.id", nullable=True, ondelete="SET NULL"),
        _fk("specialty_id", "specialties.id", nullable=True, ondelete="SET NULL"),
        sa.Column("category", sa.String(30), server_default="OTHER", nullable=False),
        sa.Column("duration_minutes", sa.Integer()),
        sa.Column("sessions_required", sa.Integer(), server_default="1", nullable=False),
        sa.Column("price", sa.Float()),
        sa.Column("price_range_min", sa.Float()),
        sa.Column("price_range_max", sa.Float()),
        sa.Column("currency", sa.String(3), server_default="USD", nullable=False),
        sa.Column("success_rate", sa.Float()),
        sa.Column("waiting_time_days", sa.Integer()),
        sa.Column("requirements", postgresql.JSONB()),
        _flag("is_available", True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_treatments"),
    )
    op.create_index("ix_treatments_hospital_id", "treatments", ["hospital_id"])

    # -- inspired content ------------------------------------------------------
    op.create_table(
        "inspired_categories",
        _id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("icon", sa.String(50)),
        sa.Column("color_code", sa.String(7)),
        sa.Column("sort_order", sa.Integer(), server_default="0", nullable=False),
        _flag("is_active", True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_inspired_categories"),
    )

    op.create_table(
        "inspired_content",
        _id(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("subtitle", sa.String(300)),
        sa.Column("slug", sa.String(200), nullable=False),
        sa.Column("content_type", sa.String(30), nullable=False),
        _fk("category_id", "inspired_categories.id", nullable=True, ondelete="SET NULL"),
        sa.Column("target_country", sa.String(30)),
        sa.Column("target_city", sa.String(100)),
        sa.Column("excerpt", sa.String(500)),
        sa.Column("content", sa.Text()),
        sa.Column("featured_image", sa.String(500)),
        sa.Column("meta_title", sa.String(200)),
        sa.Column("meta_description", sa.String(160)),
        _flag("is_published", False),
        _flag("is_featured", False),
        sa.Column("published_at", sa.DateTime(timezone=True)),
        sa.Column("sort_order", sa.Integer(), server_default="0", nullable=False),
        sa.Column("view_count", sa.Integer(), server_default="0", nullable=False),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_inspired_content"),
        sa.UniqueConstraint("slug", name="uq_inspired_content_slug"),
    )

    op.create_table(
        "inspired_content_hospitals",
        _id(),
        _fk("content_id", "inspired_content.id"),
        _fk("hospital_id", "hospitals.id"),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("custom_title", sa.String(200)),
        sa.Column("custom_description", sa.String(1000)),
        sa.Column("highlight_text", sa.String(100)),
        sa.Column("rating_score", sa.Float()),
        sa.Column("patient_count", sa.Integer()),
        sa.Column("price_range_min", sa.Float()),
        sa.Column("price_range_max", sa.Float()),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_inspired_content_hospitals"),
    )
    op.create_index(
        "uq_inspired_content_hospitals_content_position",
        "inspired_content_hospitals",
        ["content_id", "position"],
        unique=True,
    )

    # -- usage metering --------------------------------------------------------
    cost_rates = op.create_table(
        "cost_rates",
        _id(),
        sa.Column("model_name", sa.String(100), nullable=False),
        sa.Column("input_cost_per_1k_tokens", sa.Float(), nullable=False),
        sa.Column("output_cost_per_1k_tokens", sa.Float(), nullable=False),
        sa.Column("description", sa.Text()),
        _flag("is_active", True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_cost_rates"),
        sa.UniqueConstraint("model_name", name="uq_cost_rates_model_name"),
    )
    op.bulk_insert(
        cost_rates,
        [
            {
                "model_name": name,
                "input_cost_per_1k_tokens": input_rate,
                "output_cost_per_1k_tokens": output_rate,
            }
            for name, input_rate, output_rate in COST_RATES
        ],
    )

    op.create_table(
        "usage_sessions",
        _id(),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("session_name", sa.String(200)),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("ended_at", sa.DateTime(timezone=True)),
        sa.Column("total_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_cost_usd", sa.Float(), server_default="0", nullable=False),
        sa.Column("request_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("metadata", postgresql.JSONB()),
        sa.PrimaryKeyConstraint("id", name="pk_usage_sessions"),
    )
    op.create_index(
        "ix_usage_sessions_user_id_started_at", "usage_sessions", ["user_id", "started_at"]
    )

    op.create_table(
        "token_usage",
        _id(),
        sa.Column("user_id", sa.String(100), nullable=False),
        _fk("session_id", "usage_sessions.id", nullable=True, ondelete="SET NULL"),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("endpoint", sa.String(300)),
        sa.Column("model_name", sa.String(100)),
        sa.Column("input_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("output_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("cost_usd", sa.Float(), server_default="0", nullable=False),
        sa.Column("request_data", postgresql.JSONB()),
        sa.Column("response_data", postgresql.JSONB()),
        sa.Column("duration_ms", sa.Integer()),
        _flag("success", True),
        sa.Column("error_message", sa.Text()),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_token_usage"),
    )
    op.create_index(
        "ix_token_usage_user_id_created_at", "token_usage", ["user_id", "created_at"]
    )

    op.create_table(
        "usage_budgets",
        _id(),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("daily_limit_usd", sa.Float(), server_default="10", nullable=False),
        sa.Column("monthly_limit_usd", sa.Float(), server_default="300", nullable=False),
        sa.Column("current_daily_spend", sa.Float(), server_default="0", nullable=False),
        sa.Column("current_monthly_spend", sa.Float(), server_default="0", nullable=False),
        sa.Column("last_daily_reset", sa.Date()),
        sa.Column("last_monthly_reset", sa.Date()),
        _flag("notifications_enabled", True),
        sa.Column(
            "warning_threshold_percent", sa.Integer(), server_default="80", nullable=False
        ),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_usage_budgets"),
        sa.UniqueConstraint("user_id", name="uq_usage_budgets_user_id"),
    )

    op.execute(text(FIND_SIMILAR_HOSPITALS))


def downgrade() -> None:
    op.execute(
        text(
            "DROP FUNCTION IF EXISTS find_similar_hospitals"
            "(uuid, double precision, integer)"
        )
    )
    for table in (
        "usage_budgets",
        "token_usage",
        "usage_sessions",
        "cost_rates",
        "inspired_content_hospitals",
        "inspired_content",
        "inspired_categories",
        "treatments",
        "doctor_specialties",
        "doctor_hospitals",
        "doctors",
        "specialties",
        "hospital_facilities",
        "facilities",
        "hospitals",
    ):
        op.drop_table(table)
