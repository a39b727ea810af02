"""Initial schema for ScriptGate: devices, script catalog, payments, audit.

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 10:00:00
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ---------------------------------------------
    # devices
    # ---------------------------------------------
    op.create_table(
        "devices",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("hwid", sa.String(length=400), nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_status", sa.Text(), nullable=False, server_default=sa.text("'unpaid'")),
        sa.Column("payment_id", sa.Uuid(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("approval_source", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("last_used", sa.DateTime(timezone=False), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("hwid", name="uq_devices_hwid"),
        sa.CheckConstraint(
            "status IN ('pending','active','blocked','expired')", name="ck_devices_status_allowed"
        ),
        sa.CheckConstraint(
            "payment_status IN ('unpaid','pending_verification','paid')",
            name="ck_devices_payment_status_allowed",
        ),
    )
    op.create_index("ix_devices_username", "devices", ["username"], unique=False)
    op.create_index("ix_devices_status", "devices", ["status"], unique=False)

    # ---------------------------------------------
    # script_versions (+ storico)
    # ---------------------------------------------
    op.create_table(
        "script_versions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("version", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("update_notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("name", name="uq_script_versions_name"),
    )
    # al massimo una versione attiva in tutta la tabella
    op.create_index(
        "uq_script_versions_single_active",
        "script_versions",
        ["is_active"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "script_revisions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("script_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("version", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("update_notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(
            ["script_id"], ["script_versions.id"],
            name="fk_script_revisions_script_id__script_versions", ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("name", "revision", name="uq_script_revisions_name_revision"),
    )
    op.create_index("ix_script_revisions_script_id", "script_revisions", ["script_id"], unique=False)

    # ---------------------------------------------
    # payments
    # ---------------------------------------------
    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("transaction_id", sa.String(length=128), nullable=True),
        sa.Column(
            "payment_status", sa.Text(), nullable=False,
            server_default=sa.text("'pending_verification'"),
        ),
        sa.Column("device_hwid", sa.String(length=400), nullable=False),
        sa.Column("proof_reference", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(
            ["device_hwid"], ["devices.hwid"],
            name="fk_payments_device_hwid__devices", ondelete="RESTRICT",
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending_verification','completed','rejected')",
            name="ck_payments_status_allowed",
        ),
    )
    op.create_index("ix_payments_username", "payments", ["username"], unique=False)
    op.create_index("ix_payments_device_hwid", "payments", ["device_hwid"], unique=False)
    op.create_index("ix_payments_status", "payments", ["payment_status"], unique=False)
    # un solo pagamento in verifica per device
    op.create_index(
        "uq_payments_pending_per_device",
        "payments",
        ["device_hwid"],
        unique=True,
        postgresql_where=sa.text("payment_status = 'pending_verification'"),
    )

    # ---------------------------------------------
    # audit_events
    # ---------------------------------------------
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.text("now()")),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False, server_default=sa.text("'info'")),
        sa.Column("device_hwid", sa.String(length=400), nullable=True),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("origin", sa.String(length=128), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
    )
    op.create_index("ix_audit_events_device_hwid", "audit_events", ["device_hwid"], unique=False)
    op.create_index(
        "ix_audit_events_type_created_at", "audit_events", ["event_type", "created_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_audit_events_type_created_at", table_name="audit_events")
    op.drop_index("ix_audit_events_device_hwid", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("uq_payments_pending_per_device", table_name="payments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_device_hwid", table_name="payments")
    op.drop_index("ix_payments_username", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_script_revisions_script_id", table_name="script_revisions")
    op.drop_table("script_revisions")
    op.drop_index("uq_script_versions_single_active", table_name="script_versions")
    op.drop_table("script_versions")

    op.drop_index("ix_devices_status", table_name="devices")
    op.drop_index("ix_devices_username", table_name="devices")
    op.drop_table("devices")
