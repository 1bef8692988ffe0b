"""Add gift card ledger and unit conversion reference tables

Revision ID: 20261019_gift_cards_conversions
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_gift_cards_conversions"
down_revision = None
branch_labels = None
depends_on = None


MATERIAL_CATEGORIES = ("oud_oil", "oud_chips", "bakhoor", "perfume", "attar", "alcohol", "water", "raw_material")
MATERIAL_GRADES = ("royal", "premium", "super", "regular")


def upgrade():
    op.create_table(
        "gift_cards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("qr_code", sa.Text(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="AED"),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("purchased_by_id", sa.Integer(), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recipient_name", sa.String(128), nullable=True),
        sa.Column("recipient_name_ar", sa.String(128), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("message_ar", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("amount_cents > 0", name="ck_gift_cards_amount_positive"),
        sa.CheckConstraint("balance_cents >= 0", name="ck_gift_cards_balance_non_negative"),
        sa.CheckConstraint("balance_cents <= amount_cents", name="ck_gift_cards_balance_within_face_value"),
        sa.PrimaryKeyConstraint("id", name="pk_gift_cards"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("gift_cards", schema=None) as batch_op:
        batch_op.create_index("ix_gift_cards_code", ["code"], unique=True)
        batch_op.create_index("ix_gift_cards_status", ["status"], unique=False)
        batch_op.create_index("ix_gift_cards_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_gift_cards_issued_at", ["issued_at"], unique=False)
        batch_op.create_index("ix_gift_cards_expires_at", ["expires_at"], unique=False)
        batch_op.create_index("ix_gift_cards_status_expires", ["status", "expires_at"], unique=False)

    op.create_table(
        "gift_card_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("gift_card_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(
            ["gift_card_id"], ["gift_cards.id"],
            name="fk_gift_card_transactions_gift_card_id_gift_cards",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_gift_card_transactions"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("gift_card_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_gift_card_transactions_gift_card_id", ["gift_card_id"], unique=False)
        batch_op.create_index("ix_gift_card_transactions_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_gift_card_txns_card_created", ["gift_card_id", "created_at"], unique=False)
        batch_op.create_index("ix_gift_card_txns_type_created", ["transaction_type", "created_at"], unique=False)

    # At most one EXPIRED entry per card
    op.create_index(
        "uq_gift_card_txns_one_expiry",
        "gift_card_transactions",
        ["gift_card_id"],
        unique=True,
        sqlite_where=sa.text("transaction_type = 'EXPIRED'"),
        postgresql_where=sa.text("transaction_type = 'EXPIRED'"),
    )

    op.create_table(
        "materials",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("name_ar", sa.String(128), nullable=True),
        sa.Column("category", sa.Enum(*MATERIAL_CATEGORIES, name="material_category", native_enum=False), nullable=False),
        sa.Column("density", sa.Float(), nullable=False),
        sa.Column("viscosity", sa.Float(), nullable=True),
        sa.Column("temperature_coefficient", sa.Float(), nullable=True),
        sa.Column("grade", sa.Enum(*MATERIAL_GRADES, name="material_grade", native_enum=False), nullable=True),
        sa.Column("origin", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("density > 0", name="ck_materials_density_positive"),
        sa.PrimaryKeyConstraint("id", name="pk_materials"),
        sa.UniqueConstraint("name", name="uq_materials_name"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("materials", schema=None) as batch_op:
        batch_op.create_index("ix_materials_is_active", ["is_active"], unique=False)

    op.create_table(
        "unit_conversion_rules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("material_id", sa.Integer(), nullable=True),
        sa.Column("from_unit", sa.String(32), nullable=False),
        sa.Column("to_unit", sa.String(32), nullable=False),
        sa.Column("factor", sa.Float(), nullable=False),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("factor > 0", name="ck_unit_conversion_rules_factor_positive"),
        sa.ForeignKeyConstraint(
            ["material_id"], ["materials.id"],
            name="fk_unit_conversion_rules_material_id_materials",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_unit_conversion_rules"),
        sa.UniqueConstraint("material_id", "from_unit", "to_unit", name="uq_unit_conversion_rules_material_units"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("unit_conversion_rules", schema=None) as batch_op:
        batch_op.create_index("ix_unit_conversion_rules_material_id", ["material_id"], unique=False)


def downgrade():
    with op.batch_alter_table("unit_conversion_rules", schema=None) as batch_op:
        batch_op.drop_index("ix_unit_conversion_rules_material_id")
    op.drop_table("unit_conversion_rules")

    with op.batch_alter_table("materials", schema=None) as batch_op:
        batch_op.drop_index("ix_materials_is_active")
    op.drop_table("materials")

    op.drop_index("uq_gift_card_txns_one_expiry", table_name="gift_card_transactions")
    with op.batch_alter_table("gift_card_transactions", schema=None) as batch_op:
        batch_op.drop_index("ix_gift_card_txns_type_created")
        batch_op.drop_index("ix_gift_card_txns_card_created")
        batch_op.drop_index("ix_gift_card_transactions_order_id")
        batch_op.drop_index("ix_gift_card_transactions_gift_card_id")
    op.drop_table("gift_card_transactions")

    with op.batch_alter_table("gift_cards", schema=None) as batch_op:
        batch_op.drop_index("ix_gift_cards_status_expires")
        batch_op.drop_index("ix_gift_cards_expires_at")
        batch_op.drop_index("ix_gift_cards_issued_at")
        batch_op.drop_index("ix_gift_cards_customer_id")
        batch_op.drop_index("ix_gift_cards_status")
        batch_op.drop_index("ix_gift_cards_code")
    op.drop_table("gift_cards")
