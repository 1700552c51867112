from alembic import op
import sqlalchemy as sa

revision = "0001_delivery_records"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "deliveries",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("callback", sa.Text(), nullable=False),
        sa.Column("pharmacist", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="in_transit"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recipient_name", sa.Text(), nullable=True),
        sa.Column("recipient_signature", sa.Text(), nullable=True),
        sa.Column("delivered_at", sa.Text(), nullable=True),
        sa.Column("pharmacist_reply", sa.Text(), nullable=True),
        sa.Column("onchain_hash", sa.String(length=66), nullable=True),
        sa.Column("onchain_txhash", sa.String(length=66), nullable=True),
        sa.Column("onchain_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_deliveries_status", "deliveries", ["status"])
    op.create_index("ix_deliveries_onchain_hash", "deliveries", ["onchain_hash"])

def downgrade():
    op.drop_index("ix_deliveries_onchain_hash", table_name="deliveries")
    op.drop_index("ix_deliveries_status", table_name="deliveries")
    op.drop_table("deliveries")
