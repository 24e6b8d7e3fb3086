"""risk_comments_and_manual_narrative

  - risk_item_comments   — typed comments, optionally internal
  - risk_items           — hypothesis / condition / consequence / control_refs
                           for manually raised risks

Guarded like the base revision so it is a no-op on databases built with
db.create_all().

Revision ID: 7b2e4c9a1f03
Revises: 3f9c2a7d1b40
Create Date: 2026-10-19 10:12:48.530117
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7b2e4c9a1f03'
down_revision = '3f9c2a7d1b40'
branch_labels = None
depends_on = None

_NARRATIVE_COLUMNS = ("hypothesis", "condition", "consequence", "control_refs")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)

    if "risk_item_comments" not in set(inspector.get_table_names()):
        op.create_table(
            "risk_item_comments",
            sa.Column("id", sa.String(length=60), nullable=False),
            sa.Column("risk_item_id", sa.String(length=36), nullable=False),
            sa.Column("comment_type", sa.String(length=30), nullable=False),
            sa.Column("comment_text", sa.Text(), nullable=False),
            sa.Column("commented_by", sa.String(length=150), nullable=False),
            sa.Column("commented_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["risk_item_id"], ["risk_items.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "idx_risk_comment_item_ts", "risk_item_comments", ["risk_item_id", "commented_at"],
        )

    existing_cols = {c["name"] for c in inspector.get_columns("risk_items")}
    with op.batch_alter_table("risk_items") as batch_op:
        for name in ("hypothesis", "condition", "consequence"):
            if name not in existing_cols:
                batch_op.add_column(sa.Column(name, sa.Text(), nullable=True))
        if "control_refs" not in existing_cols:
            batch_op.add_column(
                sa.Column("control_refs", sa.Text(), nullable=True, comment="Comma-separated control ids"),
            )


def downgrade():
    with op.batch_alter_table("risk_items") as batch_op:
        for name in reversed(_NARRATIVE_COLUMNS):
            batch_op.drop_column(name)
    op.drop_index("idx_risk_comment_item_ts", table_name="risk_item_comments")
    op.drop_table("risk_item_comments")
