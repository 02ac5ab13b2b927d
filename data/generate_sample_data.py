"""Generate sample sales data for yoyforge.

three tables with deliberately different schemas, two full years so every
date in 2025 has a 2024 counterpart:

  transactions  invoiced sales, the primary fact table
  budget        monthly targets per seller/region, no customer or product
  held_orders   orders not invoiced yet, no margin and no region
"""

import random
from datetime import date, timedelta
from pathlib import Path

from yoyforge.executor.duckdb_executor import DuckDBExecutor

SELLERS = [("S001", "Ana Torres"), ("S002", "Luis Vega"), ("S003", "Marta Gil"), ("S004", "Pablo Ruiz")]
REGIONS = [("R01", "North"), ("R02", "South"), ("R03", "East")]
CUSTOMERS = [(f"C{i:03d}", f"Customer {i}") for i in range(1, 41)]
PRODUCTS = [(f"P{i:03d}", f"Product {i}") for i in range(1, 26)]
CHANNELS = ["store", "store", "web", "phone"]

TRANSACTION_COLUMNS = {
    "date": "DATE",
    "month": "INTEGER",
    "quarter": "INTEGER",
    "year": "INTEGER",
    "seller_id": "VARCHAR",
    "seller_name": "VARCHAR",
    "customer_id": "VARCHAR",
    "customer_name": "VARCHAR",
    "product_id": "VARCHAR",
    "product_name": "VARCHAR",
    "region_id": "VARCHAR",
    "region_name": "VARCHAR",
    "channel": "VARCHAR",
    "sales_price": "DOUBLE",
    "cost_price": "DOUBLE",
    "gross_margin": "DOUBLE",
}

BUDGET_COLUMNS = {
    "date": "DATE",
    "month": "INTEGER",
    "quarter": "INTEGER",
    "year": "INTEGER",
    "seller_id": "VARCHAR",
    "region_id": "VARCHAR",
    "channel": "VARCHAR",
    "sales_price": "DOUBLE",
    "cost_price": "DOUBLE",
}

HELD_ORDER_COLUMNS = {
    "date": "DATE",
    "month": "INTEGER",
    "quarter": "INTEGER",
    "year": "INTEGER",
    "seller_id": "VARCHAR",
    "customer_id": "VARCHAR",
    "product_id": "VARCHAR",
    "channel": "VARCHAR",
    "sales_price": "DOUBLE",
}


def _calendar(day: date) -> tuple[int, int, int]:
    return day.month, (day.month - 1) // 3 + 1, day.year


def generate_transactions(count: int, years: tuple[int, ...]) -> list[tuple]:
    """Generate invoiced sales lines."""
    rows = []
    for year in years:
        start = date(year, 1, 1)
        days = (date(year, 12, 31) - start).days
        # a bit of growth so the yoy deltas aren't noise around zero
        growth = 1 + 0.08 * (year - years[0])
        for _ in range(count):
            day = start + timedelta(days=random.randint(0, days))
            seller = random.choice(SELLERS)
            customer = random.choice(CUSTOMERS)
            product = random.choice(PRODUCTS)
            region = random.choice(REGIONS)
            sales = round(random.uniform(50, 2000) * growth, 2)
            cost = round(sales * random.uniform(0.55, 0.8), 2)
            rows.append(
                (
                    day,
                    *_calendar(day),
                    *seller,
                    *customer,
                    *product,
                    *region,
                    random.choice(CHANNELS),
                    sales,
                    cost,
                    round(sales - cost, 2),
                )
            )
    return rows


def generate_budget(years: tuple[int, ...]) -> list[tuple]:
    """One budget line per seller, region and month (dated on the 1st)."""
    rows = []
    for year in years:
        for month in range(1, 13):
            day = date(year, month, 1)
            for seller_id, _ in SELLERS:
                for region_id, _ in REGIONS:
                    target = round(random.uniform(8000, 15000), 2)
                    rows.append(
                        (
                            day,
                            *_calendar(day),
                            seller_id,
                            region_id,
                            "plan",
                            target,
                            round(target * 0.7, 2),
                        )
                    )
    return rows


def generate_held_orders(count: int, years: tuple[int, ...]) -> list[tuple]:
    """Generate orders waiting to be invoiced."""
    rows = []
    for year in years:
        start = date(year, 1, 1)
        days = (date(year, 12, 31) - start).days
        for _ in range(count):
            day = start + timedelta(days=random.randint(0, days))
            rows.append(
                (
                    day,
                    *_calendar(day),
                    random.choice(SELLERS)[0],
                    random.choice(CUSTOMERS)[0],
                    random.choice(PRODUCTS)[0],
                    random.choice(CHANNELS),
                    round(random.uniform(100, 3000), 2),
                )
            )
    return rows


def generate_sample_data(
    database_path: str | None = None,
    years: tuple[int, ...] = (2024, 2025),
) -> DuckDBExecutor:
    """Create and fill the sample tables.

    Args:
        database_path: DuckDB file to write, or None for in-memory only.
        years: Calendar years to generate.

    Returns:
        Executor connected to the loaded database.
    """
    random.seed(42)  # reproducible data

    executor = DuckDBExecutor(database_path)
    executor.create_table_from_data(
        "transactions", TRANSACTION_COLUMNS, generate_transactions(1500, years)
    )
    executor.create_table_from_data("budget", BUDGET_COLUMNS, generate_budget(years))
    executor.create_table_from_data(
        "held_orders", HELD_ORDER_COLUMNS, generate_held_orders(300, years)
    )
    return executor


if __name__ == "__main__":
    import sys

    db_path = sys.argv[1] if len(sys.argv) > 1 else str(Path(__file__).parent / "sales.duckdb")
    executor = generate_sample_data(db_path)

    for table in ("transactions", "budget", "held_orders"):
        result = executor.execute(f"SELECT count(*) AS n FROM {table}")
        print(f"Generated {result.data[0]['n']} rows in {table}")

    executor.close()
    print(f"Database written to {db_path}")
