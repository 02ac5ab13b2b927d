"""Basic usage example for yoyforge.

run data/generate_sample_data.py first to create data/sales.duckdb.
"""

from datetime import date

from yoyforge.parser.filters import combine_filters, date_range_filters, parse_filter_params
from yoyforge.store import ComparisonStore


def main():
    """Demonstrate yoyforge capabilities."""
    store = ComparisonStore("metrics", "data/sales.duckdb")

    period = date_range_filters(date(2025, 1, 1), date(2025, 6, 30))

    print("=" * 60)
    print("yoyforge - H1 2025 vs H1 2024")
    print("=" * 60)

    # 1. Everything, one row
    print("\n1. Balance:")
    balance = store.balance(filters=period)
    print(f"   Sales: {balance['sales']:,.2f} (last year {balance['sales_last_year']:,.2f}, "
          f"{balance['sales_vs_last_year']:+.1f}%)")
    print(f"   Budget achievement: {balance['budget_achievement_pct']:.1f}%")
    print(f"   Gross margin: {balance['gross_margin_pct']:.1f}%")

    # 2. Only some metrics - derived metrics follow what was requested
    print("\n2. Sales and margin only:")
    row = store.compare(["sales", "gross_margin"], period)
    print(f"   gross_margin_pct: {row['gross_margin_pct']:.1f}%")
    print(f"   sales_vs_budget computed: {'sales_vs_budget' in row}")

    # 3. Grouped by seller, web channel only
    print("\n3. Top sellers on the web channel:")
    filters = combine_filters(parse_filter_params({"channel": "web"}), period)
    page = store.list_page("seller_id", filters=filters, limit=3, order_by="sales")
    for item in page.data:
        print(f"   {item['name']}: {item['sales']:,.2f} ({item['sales_vs_last_year']:+.1f}%)")
    print(f"   page {page.meta.page}/{page.meta.total_pages}")

    # 4. Held orders have no region, so they come out as zeros here
    print("\n4. Orders by region:")
    compiled = store.compile_grouped("region_id", ["sales", "orders"], period)
    print(f"   zeroed tables: {compiled.skipped_tables}")
    for row in store.compare_grouped("region_id", ["sales", "orders"], period):
        print(f"   {row['name']}: sales {row['sales']:,.2f}, orders {row['orders']}")

    # 5. Filter picker values
    print("\n5. Channels:")
    print(f"   {store.distinct_values('transactions', 'channel', period)}")

    # 6. Generated SQL
    print("\n6. Generated SQL for sales by month:")
    compiled = store.compile_grouped("month", ["sales"], period)
    print(store.compiler.format_sql(compiled.sql))

    print("\n" + "=" * 60)
    store.close()


if __name__ == "__main__":
    main()
