"""shop-floor core tables

Revision ID: 0001_shopfloor_core
Revises:
Create Date: 2026-10-18T09:00:00Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_shopfloor_core"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade():
    # ERP mirrors
    op.create_table(
        "inv_item",
        sa.Column("item_code", sa.String(length=64), primary_key=True),
        _created_at(),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("is_batch_managed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_inventory_item", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "inv_stock_batch",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _created_at(),
        sa.Column("item_code", sa.String(length=64), sa.ForeignKey("inv_item.item_code"), nullable=False),
        sa.Column("batch_number", sa.String(length=64), nullable=False),
        sa.Column("warehouse", sa.String(length=16), nullable=False),
        sa.Column("in_date", sa.Date(), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_batch_qty_nonneg"),
    )
    op.create_index("ix_inv_stock_batch_item_code", "inv_stock_batch", ["item_code"])
    op.create_index("ix_inv_stock_batch_batch_number", "inv_stock_batch", ["batch_number"])
    op.create_index("ix_inv_stock_batch_warehouse", "inv_stock_batch", ["warehouse"])
    op.create_index("ix_stock_batch_item_whs", "inv_stock_batch", ["item_code", "warehouse"])

    op.create_table(
        "inv_warehouse_stock",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _created_at(),
        sa.Column("item_code", sa.String(length=64), sa.ForeignKey("inv_item.item_code"), nullable=False),
        sa.Column("warehouse", sa.String(length=16), nullable=False),
        sa.Column("on_hand", sa.Numeric(18, 6), nullable=False, server_default="0"),
    )
    op.create_index("ix_inv_warehouse_stock_item_code", "inv_warehouse_stock", ["item_code"])
    op.create_index("ix_whs_stock_item_whs", "inv_warehouse_stock", ["item_code", "warehouse"], unique=True)

    op.create_table(
        "hr_employee",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        _created_at(),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
    )

    op.create_table(
        "mes_work_order",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        _created_at(),
        sa.Column("doc_num", sa.Integer(), nullable=False),
        sa.Column("item_code", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=256), nullable=True),
        sa.Column("planned_qty", sa.Numeric(18, 6), nullable=False),
        sa.Column("completed_qty", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("rejected_qty", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="PLANNED"),
        sa.Column("warehouse", sa.String(length=16), nullable=True),
    )
    op.create_index("ix_mes_work_order_doc_num", "mes_work_order", ["doc_num"])
    op.create_index("ix_mes_work_order_item_code", "mes_work_order", ["item_code"])
    op.create_index("ix_mes_work_order_status", "mes_work_order", ["status"])

    op.create_table(
        "mes_work_order_material",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _created_at(),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("mes_work_order.id"), nullable=False),
        sa.Column("line_num", sa.Integer(), nullable=False),
        sa.Column("item_code", sa.String(length=64), sa.ForeignKey("inv_item.item_code"), nullable=False),
        sa.Column("warehouse", sa.String(length=16), nullable=False),
        sa.Column("base_qty", sa.Numeric(18, 6), nullable=False),
        sa.Column("planned_qty", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("issued_qty", sa.Numeric(18, 6), nullable=False, server_default="0"),
    )
    op.create_index("ix_mes_work_order_material_work_order_id", "mes_work_order_material", ["work_order_id"])
    op.create_index("ix_mes_work_order_material_item_code", "mes_work_order_material", ["item_code"])
    op.create_index("ix_mes_wom_order_line", "mes_work_order_material", ["work_order_id", "line_num"], unique=True)

    # Shop-floor activity
    op.create_table(
        "mes_break_reason",
        sa.Column("code", sa.String(length=32), primary_key=True),
        _created_at(),
        sa.Column("name", sa.String(length=256), nullable=False),
    )
    op.create_index("ix_mes_break_reason_name", "mes_break_reason", ["name"])

    op.create_table(
        "mes_activity",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _created_at(),
        sa.Column("code", sa.String(length=36), nullable=False, unique=True),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("mes_work_order.id"), nullable=False),
        sa.Column("resource_code", sa.String(length=64), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("process_type", sa.String(length=8), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("break_code", sa.String(length=32), sa.ForeignKey("mes_break_reason.code"), nullable=True),
        sa.Column("notes", sa.String(length=512), nullable=True),
    )
    op.create_index("ix_mes_activity_work_order_id", "mes_activity", ["work_order_id"])
    op.create_index("ix_mes_activity_resource_code", "mes_activity", ["resource_code"])
    op.create_index("ix_mes_activity_employee_id", "mes_activity", ["employee_id"])
    op.create_index("ix_mes_activity_order_emp_start", "mes_activity", ["work_order_id", "employee_id", "started_at"])

    # Production entry
    op.create_table(
        "mes_batch_sequence",
        sa.Column("prefix", sa.String(length=32), primary_key=True),
        sa.Column("last_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "mes_production_entry",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _created_at(),
        sa.Column("idempotency_key", sa.String(length=128), nullable=False, unique=True),
        sa.Column("work_order_id", sa.Integer(), sa.ForeignKey("mes_work_order.id"), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("accepted_qty", sa.Numeric(18, 6), nullable=False),
        sa.Column("rejected_qty", sa.Numeric(18, 6), nullable=False),
        sa.Column("batch_number", sa.String(length=64), nullable=True),
        sa.Column("material_issue_ref", sa.Integer(), nullable=True),
        sa.Column("accepted_receipt_ref", sa.Integer(), nullable=True),
        sa.Column("rejected_receipt_ref", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=False),
    )
    op.create_index("ix_mes_production_entry_work_order_id", "mes_production_entry", ["work_order_id"])
    op.create_index("ix_mes_production_entry_batch_number", "mes_production_entry", ["batch_number"])
    op.create_index("ix_mes_production_entry_status", "mes_production_entry", ["status"])

    # Audit + outbox
    op.create_table(
        "sys_audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _created_at(),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=256), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index("ix_sys_audit_log_actor", "sys_audit_log", ["actor"])
    op.create_index("ix_sys_audit_log_action", "sys_audit_log", ["action"])
    op.create_index("ix_sys_audit_log_request_id", "sys_audit_log", ["request_id"])
    op.create_index("ix_audit_entity_time", "sys_audit_log", ["entity_type", "created_at"])

    op.create_table(
        "outbox_event",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _created_at(),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_topic_created", "outbox_event", ["topic", "created_at"])
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "available_at"])


def downgrade():
    for table in (
        "outbox_event",
        "sys_audit_log",
        "mes_production_entry",
        "mes_batch_sequence",
        "mes_activity",
        "mes_break_reason",
        "mes_work_order_material",
        "mes_work_order",
        "hr_employee",
        "inv_warehouse_stock",
        "inv_stock_batch",
        "inv_item",
    ):
        op.drop_table(table)
