"""create payment session tables"""
from alembic import op
import sqlalchemy as sa

revision = "20261018_create_payment_sessions"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing = set(inspector.get_table_names())

    if "payment_sessions" not in existing:
        op.create_table(
            "payment_sessions",
            sa.Column("id", sa.String(length=128), primary_key=True),
            sa.Column("provider", sa.String(length=32), nullable=False),
            sa.Column("order_id", sa.String(length=128), nullable=False),
            sa.Column("amount", sa.Numeric(18, 3), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column(
                "status",
                sa.Enum("PENDING", "COMPLETED", "FAILED", name="sessionstatus"),
                nullable=False,
            ),
            sa.Column("checkout_url", sa.String(length=2048), nullable=False),
            sa.Column("provider_metadata", sa.JSON(), nullable=False),
            sa.Column("degraded", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.CheckConstraint("amount > 0", name="ck_payment_session_positive_amount"),
        )
        op.create_index("ix_payment_sessions_status", "payment_sessions", ["status"])
        op.create_index("ix_payment_sessions_order_id", "payment_sessions", ["order_id"])

    if "payment_session_references" not in existing:
        op.create_table(
            "payment_session_references",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("provider", sa.String(length=32), nullable=False),
            sa.Column("reference", sa.String(length=255), nullable=False),
            sa.Column("session_id", sa.String(length=128), sa.ForeignKey("payment_sessions.id"), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint(
                "provider", "reference", name="uq_payment_session_references_provider_reference"
            ),
        )
        op.create_index(
            "ix_payment_session_references_session_id", "payment_session_references", ["session_id"]
        )


def downgrade() -> None:
    op.drop_index("ix_payment_session_references_session_id", table_name="payment_session_references")
    op.drop_table("payment_session_references")
    op.drop_index("ix_payment_sessions_order_id", table_name="payment_sessions")
    op.drop_index("ix_payment_sessions_status", table_name="payment_sessions")
    op.drop_table("payment_sessions")
    sa.Enum(name="sessionstatus").drop(op.get_bind(), checkfirst=True)
