"""risk_lifecycle_tables

Creates the risk lifecycle tables:
  - domain_risks                   — per (app, domain) aggregate
  - risk_items                     — individual compliance gaps
  - risk_item_status_history       — append-only status trail
  - risk_item_assignment_history   — append-only assignment trail
  - applications / profile_fields / evidence_field_links — reference rows

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 3f9c2a7d1b40
Revises:
Create Date: 2026-03-02 09:41:27.118204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '3f9c2a7d1b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Reference tables ──────────────────────────────────────────────────
    if "applications" not in existing:
        op.create_table(
            "applications",
            sa.Column("app_id", sa.String(length=100), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("ratings_json", sa.Text(), nullable=True,
                      comment='JSON: {"security_rating": "A1", "integrity_rating": "C2", …}'),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("app_id"),
        )

    if "profile_fields" not in existing:
        op.create_table(
            "profile_fields",
            sa.Column("id", sa.String(length=100), nullable=False),
            sa.Column("app_id", sa.String(length=100), nullable=False),
            sa.Column("field_key", sa.String(length=150), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("app_id", "field_key", name="uq_profile_field_app_key"),
        )
        op.create_index("ix_profile_fields_app_id", "profile_fields", ["app_id"])

    if "evidence_field_links" not in existing:
        op.create_table(
            "evidence_field_links",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("evidence_id", sa.String(length=100), nullable=False),
            sa.Column("profile_field_id", sa.String(length=100), nullable=False),
            sa.Column("link_status", sa.String(length=30), nullable=False,
                      server_default="ATTACHED"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("evidence_id", "profile_field_id", name="uq_evidence_field_link"),
        )
        op.create_index("ix_evidence_field_links_evidence_id", "evidence_field_links", ["evidence_id"])
        op.create_index(
            "ix_evidence_field_links_profile_field_id", "evidence_field_links", ["profile_field_id"],
        )

    # ── Domain risks ──────────────────────────────────────────────────────
    if "domain_risks" not in existing:
        op.create_table(
            "domain_risks",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("app_id", sa.String(length=100), nullable=False),
            sa.Column("domain", sa.String(length=100), nullable=False),
            sa.Column("derived_from", sa.String(length=100), nullable=True),
            sa.Column("arb", sa.String(length=100), nullable=False),
            sa.Column("assigned_arb", sa.String(length=100), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("open_items", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("high_priority_items", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("priority_score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("overall_priority", sa.String(length=20), nullable=True),
            sa.Column("overall_severity", sa.String(length=20), nullable=True),
            sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_item_added_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("app_id", "domain", name="uq_domain_risk_app_domain"),
        )
        op.create_index("ix_domain_risks_app_id", "domain_risks", ["app_id"])
        op.create_index("idx_domain_risk_arb_status", "domain_risks", ["assigned_arb", "status"])

    # ── Risk items ────────────────────────────────────────────────────────
    if "risk_items" not in existing:
        op.create_table(
            "risk_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("app_id", sa.String(length=100), nullable=False),
            sa.Column("domain_risk_id", sa.String(length=36), nullable=False),
            sa.Column("field_key", sa.String(length=150), nullable=False),
            sa.Column("profile_field_id", sa.String(length=100), nullable=True),
            sa.Column("triggering_evidence_id", sa.String(length=100), nullable=True,
                      comment="NULL for manually raised items"),
            sa.Column("domain", sa.String(length=100), nullable=True),
            sa.Column("arb", sa.String(length=100), nullable=True),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=30), nullable=False),
            sa.Column("evidence_status", sa.String(length=50), nullable=True),
            sa.Column("priority_score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("creation_type", sa.String(length=30), nullable=False),
            sa.Column("raised_by", sa.String(length=150), nullable=False),
            sa.Column("assigned_to", sa.String(length=150), nullable=True),
            sa.Column("assigned_by", sa.String(length=150), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolution", sa.String(length=60), nullable=True),
            sa.Column("resolution_comment", sa.Text(), nullable=True),
            sa.Column("policy_requirement_snapshot", sa.Text(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["domain_risk_id"], ["domain_risks.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "app_id", "field_key", "triggering_evidence_id",
                name="uq_risk_item_app_field_evidence",
            ),
        )
        op.create_index("ix_risk_items_app_id", "risk_items", ["app_id"])
        op.create_index("ix_risk_items_domain_risk_id", "risk_items", ["domain_risk_id"])
        op.create_index("ix_risk_items_field_key", "risk_items", ["field_key"])
        op.create_index("ix_risk_items_triggering_evidence_id", "risk_items", ["triggering_evidence_id"])
        op.create_index("ix_risk_items_status", "risk_items", ["status"])
        op.create_index("ix_risk_items_assigned_to", "risk_items", ["assigned_to"])
        op.create_index("idx_risk_item_app_status", "risk_items", ["app_id", "status"])
        op.create_index("idx_risk_item_domain_status", "risk_items", ["domain_risk_id", "status"])

    # ── History ───────────────────────────────────────────────────────────
    if "risk_item_status_history" not in existing:
        op.create_table(
            "risk_item_status_history",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("risk_item_id", sa.String(length=36), nullable=False),
            sa.Column("from_status", sa.String(length=30), nullable=True),
            sa.Column("to_status", sa.String(length=30), nullable=False),
            sa.Column("resolution", sa.String(length=60), nullable=True),
            sa.Column("resolution_comment", sa.Text(), nullable=True),
            sa.Column("changed_by", sa.String(length=150), nullable=False),
            sa.Column("actor_role", sa.String(length=20), nullable=False),
            sa.Column("mitigation_plan", sa.Text(), nullable=True),
            sa.Column("reassigned_to", sa.String(length=150), nullable=True),
            sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["risk_item_id"], ["risk_items.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "idx_status_history_item_ts", "risk_item_status_history", ["risk_item_id", "changed_at"],
        )
        op.create_index("idx_status_history_actor", "risk_item_status_history", ["changed_by"])

    if "risk_item_assignment_history" not in existing:
        op.create_table(
            "risk_item_assignment_history",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("risk_item_id", sa.String(length=36), nullable=False),
            sa.Column("assigned_from", sa.String(length=150), nullable=True),
            sa.Column("assigned_to", sa.String(length=150), nullable=True),
            sa.Column("assigned_by", sa.String(length=150), nullable=False),
            sa.Column("assignment_type", sa.String(length=20), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["risk_item_id"], ["risk_items.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "idx_assignment_history_item_ts", "risk_item_assignment_history",
            ["risk_item_id", "assigned_at"],
        )


def downgrade():
    for table in (
        "risk_item_assignment_history",
        "risk_item_status_history",
        "risk_items",
        "domain_risks",
        "evidence_field_links",
        "profile_fields",
        "applications",
    ):
        op.drop_table(table)
