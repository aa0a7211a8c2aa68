"""
Service Rush Simulation

Simulates a busy service against a running API: many tables order at once,
the kitchen walks every order through to completed and the caisse takes
payment. Paid orders end up in the sales ledger (check with verify.py).

Run from project root: python scripts/simulate.py
"""

import asyncio
import sys
import os
import random
import time
import argparse
from datetime import datetime
from typing import Any, Optional

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 30
TABLES = [str(n) for n in range(1, 21)]
ADMIN_PIN = os.environ.get("DEFAULT_ADMIN_PIN", "1234")

GUEST_MESSAGES = [None, "No onions please", "Birthday at this table", "Quick please", "Allergic to nuts"]
STATUS_FLOW = ["preparing", "ready", "completed"]


def generate_cart(dishes: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Random cart drawn from the available dishes."""
    available = [d for d in dishes if d.get("is_available")]
    picks = random.sample(available, k=min(len(available), random.randint(1, 4)))
    return [
        {"dish_id": dish["id"], "quantity": random.randint(1, 3)}
        for dish in picks
    ]


# =============================================================================
# GUEST SIDE
# =============================================================================

async def place_order(
    client: httpx.AsyncClient,
    order_num: int,
    dishes: list[dict[str, Any]],
) -> dict[str, Any]:
    """Submit one cart from a random table."""
    payload = {
        "table_number": random.choice(TABLES),
        "items": generate_cart(dishes),
        "customer_message": random.choice(GUEST_MESSAGES),
    }
    start_time = time.time()

    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 201:
            data = response.json()
            return {
                "order_num": order_num,
                "success": True,
                "order_id": data.get("order_id"),
                "total": data.get("total_price", 0.0),
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "error": response.text[:100],
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# STAFF SIDE
# =============================================================================

async def staff_login(client: httpx.AsyncClient, pin: str) -> Optional[str]:
    response = await client.post(
        f"{API_BASE_URL}/api/staff/login",
        json={"pin": pin, "scope": "admin"},
    )
    if response.status_code != 200:
        print(f"   ❌ Login failed: {response.text[:100]}")
        return None
    return response.json()["token"]


async def cook_and_pay(client: httpx.AsyncClient, headers: dict[str, str], order_id: str) -> dict[str, Any]:
    """Walk one order through the kitchen, then mark it paid."""
    for status in STATUS_FLOW:
        # Let other orders interleave in the kitchen
        await asyncio.sleep(random.uniform(0.0, 0.2))
        response = await client.patch(
            f"{API_BASE_URL}/api/orders/{order_id}/status",
            json={"status": status},
            headers=headers,
        )
        if response.status_code != 200:
            return {"order_id": order_id, "success": False, "error": response.text[:100]}

    response = await client.post(f"{API_BASE_URL}/api/orders/{order_id}/pay", headers=headers)
    if response.status_code != 200:
        return {"order_id": order_id, "success": False, "error": response.text[:100]}
    return {"order_id": order_id, "success": True}


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS, pin: str = ADMIN_PIN) -> dict[str, Any]:
    """
    Run the service rush.

    Args:
        num_orders: Number of carts to submit concurrently
        pin: Admin PIN used by the kitchen and the caisse
    """
    print("=" * 70)
    print("🍽️  SERVICE RUSH SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient(timeout=30.0) as client:
        menu = (await client.get(f"{API_BASE_URL}/api/menu")).json()
        dishes = menu.get("dishes", [])
        if not any(d.get("is_available") for d in dishes):
            print("\n❌ The menu has no available dish. Add dishes first.")
            return {"total": num_orders, "successful": 0, "failed": num_orders}

        print("\n🚀 Tables are ordering...\n")
        results = await asyncio.gather(*[
            place_order(client, i + 1, dishes) for i in range(num_orders)
        ])
        placed = [r for r in results if r["success"]]

        token = await staff_login(client, pin)
        if token is None:
            return {"total": num_orders, "successful": len(placed), "failed": num_orders - len(placed)}
        headers = {"X-Staff-Token": token}

        print("👨‍🍳 Kitchen and caisse at work...\n")
        served = await asyncio.gather(*[
            cook_and_pay(client, headers, r["order_id"]) for r in placed
        ])

        caisse = (await client.get(f"{API_BASE_URL}/api/caisse", headers=headers)).json()

    total_time = round(time.time() - start_time, 2)
    failed = [r for r in results if not r["success"]]
    unserved = [r for r in served if not r["success"]]

    print("=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Orders placed: {len(placed)}/{num_orders}")
    print(f"✅ Orders served and paid: {len(served) - len(unserved)}/{len(placed)}")
    print(f"⏱️  Total Time: {total_time}s")

    if placed:
        avg_time = round(sum(r["time"] for r in placed) / len(placed), 3)
        print(f"\n📈 Average order submission: {avg_time}s")
        print(f"💰 Revenue (EUR, placed): {sum(r['total'] for r in placed):.2f}")

    revenue = caisse.get("revenue", {})
    print(f"💶 Caisse revenue today: {revenue.get('formatted', '?')} ({caisse.get('paid_count', 0)} paid)")

    for f in (failed + unserved)[:5]:
        print(f"   ⚠️ {f.get('order_num', f.get('order_id'))}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Check Celery terminal - all ledger exports should complete")
    print("2. Run: python scripts/verify.py")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(placed),
        "failed": len(failed),
        "total_time": total_time,
    }


async def test_single_flows() -> bool:
    """Pre-flight checks before the rush."""
    print("\n" + "=" * 70)
    print("🧪 TESTING INDIVIDUAL FLOWS")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        print("\n1️⃣ Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return False
        data = response.json()
        print(f"   ✅ Status: {data.get('status')}")
        print(f"   Database: {data.get('database')}")
        print(f"   Change feed: {data.get('change_feed')}")

        print("\n2️⃣ Menu...")
        response = await client.get(f"{API_BASE_URL}/api/menu")
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return False
        menu = response.json()
        print(f"   ✅ {len(menu.get('dishes', []))} dish(es), prices in {menu.get('currency')}")

        print("\n3️⃣ Staff login...")
        if await staff_login(client, ADMIN_PIN) is None:
            return False
        print("   ✅ Admin session opened")

    print("\n" + "=" * 70)
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Service Rush Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--pin", default=ADMIN_PIN, help="Admin PIN")
    parser.add_argument("--skip-tests", action="store_true", help="Skip pre-flight checks")
    args = parser.parse_args()

    if not args.skip_tests:
        if not asyncio.run(test_single_flows()):
            print("\n❌ Pre-flight tests failed. Fix issues before running simulation.")
            sys.exit(1)
        print("\n✅ Pre-flight tests passed!")

    asyncio.run(run_simulation(num_orders=args.orders, pin=args.pin))
