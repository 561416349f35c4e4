"""
Seed script for local development: creates the schema and a small catalogue
(parent company + branch, suppliers, products, expense categories).
Run from the repository root: python -m scripts.seed
"""
import asyncio
import sys
import os
import uuid
from decimal import Decimal

# Ensure the project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from trading_api.database import AsyncSessionLocal, create_tables
from trading_api.models.company import Company
from trading_api.models.expense import ExpenseCategory, ExpenseCategorySupplier
from trading_api.models.product import BOX_UNIT, Product
from trading_api.models.supplier import Supplier

# ---------- Fixed UUIDs ----------

COMPANY_PARENT_ID = uuid.UUID("c0000000-0000-0000-0000-000000000001")
COMPANY_BRANCH_ID = uuid.UUID("c0000000-0000-0000-0000-000000000002")

SUPPLIER_TILES_ID = uuid.UUID("e0000000-0000-0000-0000-000000000001")
SUPPLIER_FREIGHT_ID = uuid.UUID("e0000000-0000-0000-0000-000000000002")
SUPPLIER_CUSTOMS_ID = uuid.UUID("e0000000-0000-0000-0000-000000000003")

PRODUCT_TILE_ID = uuid.UUID("f0000000-0000-0000-0000-000000000001")
PRODUCT_GROUT_ID = uuid.UUID("f0000000-0000-0000-0000-000000000002")

CATEGORY_FREIGHT_ID = uuid.UUID("ca000000-0000-0000-0000-000000000001")
CATEGORY_CUSTOMS_ID = uuid.UUID("ca000000-0000-0000-0000-000000000002")
CATEGORY_HANDLING_ID = uuid.UUID("ca000000-0000-0000-0000-000000000003")


async def seed():
    await create_tables()

    async with AsyncSessionLocal() as db:
        # Check if already seeded
        result = await db.execute(select(Company).where(Company.id == COMPANY_PARENT_ID))
        if result.scalar_one_or_none():
            print("Seed data already exists. Skipping.")
            return

        # --- Companies (parent first for the self FK) ---
        db.add(Company(id=COMPANY_PARENT_ID, name="Head Office", code="HQ", is_parent=True))
        await db.flush()
        db.add(Company(id=COMPANY_BRANCH_ID, name="Branch One", code="BR1", parent_id=COMPANY_PARENT_ID))

        # --- Suppliers ---
        db.add_all([
            Supplier(id=SUPPLIER_TILES_ID, name="Anatolia Ceramics", phone="+90 212 000 0000"),
            Supplier(id=SUPPLIER_FREIGHT_ID, name="Med Freight Lines", phone="+218 21 000 0000"),
            Supplier(id=SUPPLIER_CUSTOMS_ID, name="Port Customs Broker"),
        ])

        # --- Products ---
        db.add_all([
            Product(id=PRODUCT_TILE_ID, sku="TILE-6060", name="Porcelain tile 60x60",
                    unit=BOX_UNIT, units_per_box=Decimal("1.44"), created_by_company_id=COMPANY_PARENT_ID),
            Product(id=PRODUCT_GROUT_ID, sku="GROUT-5KG", name="Tile grout 5kg",
                    unit="bag", created_by_company_id=COMPANY_PARENT_ID),
        ])
        await db.flush()

        # --- Expense categories ---
        db.add_all([
            ExpenseCategory(id=CATEGORY_FREIGHT_ID, name="Freight", description="Sea and land freight"),
            ExpenseCategory(id=CATEGORY_CUSTOMS_ID, name="Customs", description="Duties and clearance"),
            ExpenseCategory(id=CATEGORY_HANDLING_ID, name="Handling", description="Port and warehouse handling"),
        ])
        await db.flush()
        db.add_all([
            ExpenseCategorySupplier(category_id=CATEGORY_FREIGHT_ID, supplier_id=SUPPLIER_FREIGHT_ID),
            ExpenseCategorySupplier(category_id=CATEGORY_CUSTOMS_ID, supplier_id=SUPPLIER_CUSTOMS_ID),
        ])

        await db.commit()
        print("Seed data inserted successfully!")
        print("  Companies: 2 (1 parent, 1 branch)")
        print("  Suppliers: 3")
        print("  Products: 2")
        print("  Expense categories: 3")


if __name__ == "__main__":
    asyncio.run(seed())
