"""
Archive Verification Script

Verifies data integrity of the session archive workbook.
Run from project root: python scripts/verify.py
"""

import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from tableside.core.config import get_settings
from tableside.services.archive import ARCHIVE_COLUMNS

settings = get_settings()
ARCHIVE_FILE = os.path.join(settings.data_directory, settings.archive_filename)


def verify_archive() -> bool:
    """Verify the archive workbook after a simulation run."""

    print("=" * 60)
    print("🔍 ARCHIVE VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {ARCHIVE_FILE}")
    print("=" * 60)

    if not os.path.exists(ARCHIVE_FILE):
        print("\n❌ Archive file not found!")
        print("   Run the simulation and clear closed sessions first.")
        return False

    try:
        df = pd.read_excel(ARCHIVE_FILE, engine="openpyxl")
        print("\n✅ File loaded successfully!")
    except (OSError, ValueError) as e:
        print(f"\n❌ Could not read archive file: {e}")
        return False

    print("\n📊 STATISTICS:")
    print(f"   Archived Sessions: {len(df)}")
    print(f"   Columns: {len(df.columns)}")

    missing = [col for col in ARCHIVE_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
    else:
        print("\n✅ All archive columns present")

    ok = not missing

    if "session_id" in df.columns:
        duplicates = df["session_id"].duplicated().sum()
        if duplicates > 0:
            print(f"\n⚠️ {duplicates} duplicate session IDs found!")
            ok = False
        else:
            print("✅ No duplicate session IDs")

    surcharge_columns = ["subtotal", "cgst", "sgst", "service_charge", "grand_total"]
    if all(col in df.columns for col in surcharge_columns):
        recomputed = df["subtotal"] + df["cgst"] + df["sgst"] + df["service_charge"]
        mismatched = ((recomputed - df["grand_total"]).abs() > 0.02).sum()
        if mismatched:
            print(f"⚠️ {mismatched} rows where the grand total does not add up")
            ok = False
        else:
            print("✅ Every grand total adds up")

        print("\n💰 REVENUE:")
        print(f"   Total: {settings.currency_label} {df['grand_total'].sum():.2f}")
        print(f"   Average: {settings.currency_label} {df['grand_total'].mean():.2f}")

    if "session_status" in df.columns:
        open_rows = (df["session_status"] != "closed").sum()
        if open_rows:
            print(f"⚠️ {open_rows} archived sessions were not closed")
            ok = False

    print("\n📋 RECENT SESSIONS:")
    print("-" * 60)
    if len(df) > 0:
        cols = ["table_number", "customer_name", "batch_count", "grand_total", "bill_status"]
        cols = [c for c in cols if c in df.columns]
        print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "❌ VERIFICATION FOUND PROBLEMS")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_archive() else 1)
