"""
Dining Rush Simulation Script

Simulates a busy evening: many tables order at once and every table fires
several extra-item batches concurrently against the same session. At the
end each session total is checked against the sum of its line items.
Run from project root: python scripts/simulate.py
"""

import argparse
import asyncio
import os
import random
import sys
import time
from datetime import datetime
from typing import Any, Optional

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_TABLES = 20
EXTRAS_PER_TABLE = 5
CHEF_EMAIL = os.environ.get("CHEF_EMAIL", "chef@restaurant.com")
CHEF_PASSWORD = os.environ.get("CHEF_PASSWORD", "chef123")

FIRST_NAMES = ["Asha", "Rohan", "Priya", "Vikram", "Sneha", "Arjun", "Meera", "Kabir", "Isha", "Dev"]
MENU_ITEMS = [
    {"name": "Paneer Tikka", "price": 220.0},
    {"name": "Butter Naan", "price": 45.0},
    {"name": "Jeera Rice", "price": 140.0},
    {"name": "Dal Tadka", "price": 160.0},
    {"name": "Veg Hakka Noodles", "price": 180.0},
    {"name": "Boondi Raita", "price": 90.0},
    {"name": "Vanilla Ice Cream", "price": 80.0},
]


def generate_random_items() -> list[dict]:
    """Generate random line items."""
    items = []
    for _ in range(random.randint(1, 3)):
        item = random.choice(MENU_ITEMS).copy()
        item["quantity"] = random.randint(1, 3)
        items.append(item)
    return items


def items_total(items: list[dict]) -> float:
    return sum(item["price"] * item["quantity"] for item in items)


# =============================================================================
# ONE TABLE
# =============================================================================

async def run_table(
    client: httpx.AsyncClient,
    chef_headers: dict[str, str],
    table_number: int,
    extras: int,
) -> dict[str, Any]:
    """
    Full visit for one table: first order, concurrent extras, bill
    request, chef approval and download.
    """
    customer = f"{random.choice(FIRST_NAMES)} {table_number}"
    first_order = generate_random_items()
    expected = items_total(first_order)
    start_time = time.time()
    result: dict[str, Any] = {"table": table_number, "success": False}

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/sessions",
            json={
                "table_number": table_number,
                "customer_name": customer,
                "number_of_people": random.randint(1, 6),
                "items": first_order,
            },
        )
        if response.status_code != 201:
            result["error"] = response.text[:100]
            return result
        session_id = response.json()["id"]
        result["session_id"] = session_id

        batches = [generate_random_items() for _ in range(extras)]
        responses = await asyncio.gather(*[
            client.post(
                f"{API_BASE_URL}/api/sessions/{session_id}/extras",
                json={"items": batch},
            )
            for batch in batches
        ])
        accepted = [b for b, r in zip(batches, responses) if r.status_code == 200]
        expected += sum(items_total(batch) for batch in accepted)
        result["extras_accepted"] = len(accepted)

        await client.post(f"{API_BASE_URL}/api/sessions/{session_id}/bill-request")
        await client.post(
            f"{API_BASE_URL}/api/chef/sessions/{session_id}/accept-bill",
            headers=chef_headers,
        )
        response = await client.post(f"{API_BASE_URL}/api/sessions/{session_id}/bill/download")
        if response.status_code != 200:
            result["error"] = response.text[:100]
            return result

        bill = response.json()
        result["subtotal"] = bill["subtotal"]
        result["grand_total"] = bill["grand_total"]
        result["expected"] = round(expected, 2)
        result["reconciled"] = bill["reconciled"] and abs(bill["subtotal"] - expected) < 0.005
        result["success"] = result["reconciled"]
        if not result["reconciled"]:
            result["error"] = f"subtotal {bill['subtotal']} != expected {expected:.2f}"

    except httpx.HTTPError as e:
        result["error"] = str(e)[:100]
    finally:
        result["time"] = round(time.time() - start_time, 3)

    return result


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def chef_login(client: httpx.AsyncClient) -> Optional[dict[str, str]]:
    response = await client.post(
        f"{API_BASE_URL}/api/chef/login",
        json={"email": CHEF_EMAIL, "password": CHEF_PASSWORD},
    )
    if response.status_code != 200:
        print(f"   ❌ Chef login failed: {response.text}")
        return None
    return {"X-Chef-Token": response.json()["access_token"]}


async def run_simulation(
    num_tables: int = TOTAL_TABLES,
    extras: int = EXTRAS_PER_TABLE,
) -> dict[str, Any]:
    """
    Run the dining rush.

    Args:
        num_tables: Number of tables ordering at once
        extras: Concurrent extra batches per table
    """
    print("=" * 70)
    print("🔥 DINING RUSH SIMULATION - CONCURRENT EXTRAS")
    print("=" * 70)
    print(f"📋 Tables: {num_tables} (table numbers 1-{num_tables})")
    print(f"➕ Extra batches per table: {extras}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient(timeout=30.0) as client:
        chef_headers = await chef_login(client)
        if chef_headers is None:
            return {"total": num_tables, "successful": 0, "failed": num_tables, "results": []}

        print("\n🚀 Seating tables...\n")
        results = await asyncio.gather(*[
            run_table(client, chef_headers, table, extras)
            for table in range(1, num_tables + 1)
        ])

    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    lost_extras = sum(extras - r.get("extras_accepted", extras) for r in results)

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Reconciled Tables: {len(successful)}/{num_tables}")
    print(f"❌ Failed Tables: {len(failed)}/{num_tables}")
    print(f"⚠️  Rejected Extra Batches: {lost_extras}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        revenue = sum(r["grand_total"] for r in successful)
        print("\n📈 Performance Metrics:")
        print(f"   Average Visit: {avg_time}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   💰 Total Billed: Rs. {revenue:.2f}")

    if failed:
        print("\n⚠️  Failed Table Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Table #{f['table']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Clear closed sessions from the chef dashboard")
    print("   (DELETE /api/chef/sessions/closed)")
    print("2. Check Celery terminal - the archive task should complete")
    print("3. Run: python scripts/verify.py")
    print("=" * 70)

    return {
        "total": num_tables,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def test_single_flows() -> bool:
    """Pre-flight checks before the rush."""
    print("\n" + "=" * 70)
    print("🧪 TESTING INDIVIDUAL FLOWS")
    print("=" * 70)

    async with httpx.AsyncClient(timeout=30.0) as client:
        print("\n1️⃣ Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return False
        data = response.json()
        print(f"   ✅ Status: {data.get('status')}")
        print(f"   Store: {data.get('store')}")

        print("\n2️⃣ Menu...")
        response = await client.get(f"{API_BASE_URL}/api/menu")
        if response.status_code == 200:
            print(f"   ✅ {len(response.json())} items")
        else:
            print(f"   ❌ Failed: {response.text}")
            return False

        print("\n3️⃣ Chef Login...")
        if await chef_login(client) is None:
            return False
        print("   ✅ Token issued")

    print("\n" + "=" * 70)
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Dining Rush Simulation Script")
    parser.add_argument("--tables", type=int, default=TOTAL_TABLES, help="Number of tables")
    parser.add_argument("--extras", type=int, default=EXTRAS_PER_TABLE, help="Extra batches per table")
    parser.add_argument("--skip-tests", action="store_true", help="Skip pre-flight checks")
    args = parser.parse_args()

    if not args.skip_tests:
        if not asyncio.run(test_single_flows()):
            print("\n❌ Pre-flight tests failed. Fix issues before running simulation.")
            sys.exit(1)
        print("\n✅ Pre-flight tests passed!")

    outcome = asyncio.run(run_simulation(args.tables, args.extras))
    sys.exit(0 if outcome["failed"] == 0 else 1)
