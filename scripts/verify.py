"""
Sales Ledger Verification Script

Checks the Excel sales ledger after a service (or a simulation run).
Run from project root: python scripts/verify.py
"""

import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from app.services.excel_manager import ExcelManager

LEDGER_FILE = ExcelManager.ledger_path()


def verify_ledger() -> bool:
    """Verify ledger integrity."""

    print("=" * 60)
    print("🔍 SALES LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {LEDGER_FILE}")
    print("=" * 60)

    if not LEDGER_FILE.exists():
        print("\n❌ Ledger not found!")
        print("   Mark some orders as paid first: python scripts/simulate.py")
        return False

    try:
        df = pd.read_excel(LEDGER_FILE, engine="openpyxl", dtype={"order_id": str, "table_number": str})
        print("\n✅ File loaded successfully!")
    except Exception as e:
        print(f"\n❌ Could not read ledger: {e}")
        return False

    print("\n📊 STATISTICS:")
    print(f"   Paid orders: {len(df)}")
    print(f"   Columns: {len(df.columns)}")

    missing = [col for col in ExcelManager.LEDGER_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
    else:
        print("\n✅ All ledger columns present")

    ok = not missing
    if "order_id" in df.columns:
        duplicates = df["order_id"].duplicated().sum()
        if duplicates > 0:
            ok = False
            print(f"\n⚠️ {duplicates} duplicate order IDs found!")
        else:
            print("✅ No duplicate order IDs")

    if "total_eur" in df.columns and len(df) > 0:
        print("\n💰 REVENUE:")
        print(f"   Total: {df['total_eur'].sum():.2f} EUR")
        print(f"   Average: {df['total_eur'].mean():.2f} EUR")
        if "table_number" in df.columns:
            print(f"   Busiest table: {df['table_number'].value_counts().idxmax()}")

    print("\n📋 RECENT PAYMENTS:")
    print("-" * 60)
    if len(df) > 0:
        cols = [c for c in ["order_id", "table_number", "display_total", "paid_at"] if c in df.columns]
        print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "⚠️ VERIFICATION FOUND PROBLEMS")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_ledger() else 1)
