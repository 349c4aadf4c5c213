"""shop erp core tables

Revision ID: 0001_shop_erp_core
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_shop_erp_core"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "inventory",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Numeric(12, 3), nullable=False, server_default="0"),
        sa.Column("unit", sa.String(length=64), nullable=False),
        sa.Column("brand", sa.String(length=32), nullable=False, server_default="Generica"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint(
            "type in ('Materia Prima','Producto Terminado')",
            name="ck_inventory_type",
        ),
    )
    op.create_index("ix_inventory_name", "inventory", ["name"])

    op.create_table(
        "inventory_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("inventory_id", sa.Integer(), sa.ForeignKey("inventory.id"), nullable=False),
        sa.Column("quantity_change", sa.Numeric(12, 3), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("type in ('Entrada','Salida')", name="ck_movement_type"),
        sa.CheckConstraint("quantity_change <> 0", name="ck_movement_nonzero"),
    )
    op.create_index("ix_inventory_movements_inventory_id", "inventory_movements", ["inventory_id"])
    op.create_index("ix_inventory_movements_created_at", "inventory_movements", ["created_at"])

    op.create_table(
        "workers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("shift", sa.String(length=32), nullable=True),
    )
    op.create_index("ix_workers_name", "workers", ["name"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("finished_product_inventory_id", sa.Integer(), sa.ForeignKey("inventory.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index(
        "ix_products_finished_product_inventory_id", "products", ["finished_product_inventory_id"], unique=True,
    )

    op.create_table(
        "product_recipes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("raw_material_inventory_id", sa.Integer(), sa.ForeignKey("inventory.id"), nullable=False),
        sa.Column("quantity_required", sa.Numeric(12, 3), nullable=False),
        sa.CheckConstraint("quantity_required > 0", name="ck_recipe_qty_positive"),
    )
    op.create_index("ix_product_recipes_product_id", "product_recipes", ["product_id"])
    op.create_index("ix_product_recipes_raw_material_inventory_id", "product_recipes", ["raw_material_inventory_id"])

    op.create_table(
        "production_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity_to_produce", sa.Numeric(12, 3), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Pendiente"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status in ('Pendiente','En Proceso','Completado')",
            name="ck_order_status",
        ),
        sa.CheckConstraint("quantity_to_produce > 0", name="ck_order_qty_positive"),
    )
    op.create_index("ix_production_orders_product_id", "production_orders", ["product_id"])
    op.create_index("ix_production_orders_status", "production_orders", ["status"])

    op.create_table(
        "production_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("worker_id", sa.Integer(), sa.ForeignKey("workers.id"), nullable=False),
        sa.Column("inventory_id", sa.Integer(), sa.ForeignKey("inventory.id"), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
        sa.Column("production_date", sa.Date(), nullable=False),
        sa.Column("production_order_id", sa.Integer(), sa.ForeignKey("production_orders.id"), nullable=True),
        sa.Column("consumption", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_prod_log_qty_positive"),
    )
    op.create_index("ix_production_log_worker_id", "production_log", ["worker_id"])
    op.create_index("ix_production_log_inventory_id", "production_log", ["inventory_id"])
    op.create_index("ix_production_log_production_date", "production_log", ["production_date"])
    op.create_index("ix_production_log_production_order_id", "production_log", ["production_order_id"])

    op.create_table(
        "sellers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sellers_name", "sellers", ["name"])

    op.create_table(
        "seller_inventory",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("sellers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("inventory_id", sa.Integer(), sa.ForeignKey("inventory.id"), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("seller_id", "inventory_id", name="uq_seller_inventory_item"),
    )
    op.create_index("ix_seller_inventory_seller_id", "seller_inventory", ["seller_id"])
    op.create_index("ix_seller_inventory_inventory_id", "seller_inventory", ["inventory_id"])

    op.create_table(
        "seller_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("seller_id", sa.Integer(), sa.ForeignKey("sellers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("inventory_id", sa.Integer(), sa.ForeignKey("inventory.id"), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("type in ('Carga','Venta','Devolución')", name="ck_seller_movement_type"),
        sa.CheckConstraint("quantity > 0", name="ck_seller_movement_qty_positive"),
    )
    op.create_index("ix_seller_movements_seller_id", "seller_movements", ["seller_id"])
    op.create_index("ix_seller_movements_inventory_id", "seller_movements", ["inventory_id"])
    op.create_index("ix_seller_movements_created_at", "seller_movements", ["created_at"])

def downgrade():
    op.drop_table("seller_movements")
    op.drop_table("seller_inventory")
    op.drop_table("sellers")
    op.drop_table("production_log")
    op.drop_table("production_orders")
    op.drop_table("product_recipes")
    op.drop_table("products")
    op.drop_table("workers")
    op.drop_table("inventory_movements")
    op.drop_table("inventory")
