"""
Load Simulation Script

Fires bursts of jobs, stock deductions and realtime events at a running API
to watch the worker pools, rate limits and room fan-out under load.
Run from project root: python scripts/simulate.py
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_JOBS = 20

FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
EMAIL_TYPES = ["order-confirmation", "reservation-confirmation", "general"]
SMS_TYPES = ["order-status", "reservation-reminder", "general"]
STATIONS = ["grill", "fry", "salad", "dessert"]


def generate_email_job() -> dict[str, Any]:
    name = random.choice(FIRST_NAMES)
    return {
        "category": "email",
        "payload": {
            "type": random.choice(EMAIL_TYPES),
            "to": [f"{name.lower()}{random.randint(1, 999)}@example.com"],
            "subject": f"Hello {name}",
            "data": {"customer_name": name, "order_number": str(random.randint(1000, 9999))},
        },
    }


def generate_sms_job() -> dict[str, Any]:
    return {
        "category": "sms",
        "payload": {
            "type": random.choice(SMS_TYPES),
            "to": [f"555{random.randint(100, 999)}{random.randint(1000, 9999)}"],
            "message": f"Your order #{random.randint(1000, 9999)} is ready for pickup",
        },
    }


def summarize(label: str, results: list[dict]) -> None:
    ok = [r for r in results if r["success"]]
    print(f"   {label}: {len(ok)}/{len(results)} accepted")
    if ok:
        avg = round(sum(r["time"] for r in ok) / len(ok), 3)
        print(f"   Average response: {avg}s")
    for r in [r for r in results if not r["success"]][:5]:
        print(f"   ⚠️ {r.get('error', 'Unknown error')}")


async def post(client: httpx.AsyncClient, path: str, payload: dict[str, Any]) -> dict[str, Any]:
    start_time = time.time()
    try:
        response = await client.post(f"{API_BASE_URL}{path}", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)
        if response.status_code in (200, 201):
            return {"success": True, "data": response.json(), "time": elapsed}
        return {"success": False, "error": response.text[:100], "time": elapsed}
    except httpx.HTTPError as e:
        return {"success": False, "error": str(e)[:100], "time": round(time.time() - start_time, 3)}


# =============================================================================
# SCENARIOS
# =============================================================================

async def fire_jobs(client: httpx.AsyncClient, count: int) -> list[str]:
    print(f"\n🚀 Enqueueing {count} email and {count} SMS jobs...")
    payloads = [generate_email_job() for _ in range(count)] + [generate_sms_job() for _ in range(count)]
    results = await asyncio.gather(*(post(client, "/api/jobs", p) for p in payloads))
    summarize("Jobs", results)
    return [r["data"]["job_id"] for r in results if r["success"]]


async def fire_deduction(client: httpx.AsyncClient, location_id: str, item_id: str) -> None:
    print(f"\n🚀 Deducting stock for menu item {item_id} at location {location_id}...")
    result = await post(client, "/api/inventory/deductions", {
        "order_id": f"SIM-{random.randint(10000, 99999)}",
        "location_id": location_id,
        "items": [{"item_id": item_id, "quantity": random.randint(1, 3)}],
    })
    if result["success"]:
        data = result["data"]
        print(f"   ✅ Applied: {len(data['applied'])}, shortages: {len(data['shortages'])}, "
              f"skipped: {data['skipped_items']}")
    else:
        print(f"   ❌ Failed: {result['error']}")


async def fire_events(client: httpx.AsyncClient, location_id: str, count: int) -> None:
    print(f"\n🚀 Publishing {count} kitchen events...")
    payloads = [
        {
            "room": f"kitchen-station:{random.choice(STATIONS)}",
            "event": "kitchen:new-order",
            "payload": {"order_number": str(random.randint(1000, 9999)), "location_id": location_id},
        }
        for _ in range(count)
    ]
    results = await asyncio.gather(*(post(client, "/api/events/publish", p) for p in payloads))
    summarize("Events", results)
    delivered = sum(r["data"]["delivered"] for r in results if r["success"] and r["data"]["delivered"] > 0)
    print(f"   Delivered to {delivered} subscriber(s)")


async def watch_jobs(client: httpx.AsyncClient, job_ids: list[str], timeout: float) -> None:
    print(f"\n⏳ Waiting up to {timeout}s for jobs to finish...")
    deadline = time.time() + timeout
    pending = set(job_ids)
    statuses: dict[str, str] = {}
    while pending and time.time() < deadline:
        for job_id in list(pending):
            response = await client.get(f"{API_BASE_URL}/api/jobs/{job_id}")
            if response.status_code != 200:
                pending.discard(job_id)
                continue
            status = response.json()["status"]
            if status in ("completed", "failed"):
                statuses[job_id] = status
                pending.discard(job_id)
        if pending:
            await asyncio.sleep(1.0)

    completed = sum(1 for s in statuses.values() if s == "completed")
    failed = sum(1 for s in statuses.values() if s == "failed")
    print(f"   ✅ Completed: {completed}  ❌ Failed: {failed}  ⏳ Unfinished: {len(pending)}")


async def run_simulation(args: argparse.Namespace) -> None:
    print("=" * 70)
    print("🔥 LOAD SIMULATION")
    print("=" * 70)
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"❌ Health check failed: {response.text}")
            sys.exit(1)
        print(f"\n✅ Status: {response.json().get('status')}")

        job_ids = await fire_jobs(client, args.jobs)
        if args.item:
            await fire_deduction(client, args.location, args.item)
        await fire_events(client, args.location, args.events)
        await watch_jobs(client, job_ids, args.wait)

        counts = (await client.get(f"{API_BASE_URL}/api/jobs")).json()["counts"]

    print("\n" + "=" * 70)
    print("📊 QUEUE COUNTS")
    print("=" * 70)
    for category, by_status in counts.items():
        print(f"   {category:<10} {by_status}")
    print(f"\n⏱️  Total Time: {round(time.time() - start_time, 2)}s")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Load Simulation Script")
    parser.add_argument("--jobs", type=int, default=TOTAL_JOBS, help="Email and SMS jobs per burst")
    parser.add_argument("--events", type=int, default=20, help="Realtime events to publish")
    parser.add_argument("--location", default="1", help="Location id for deductions and events")
    parser.add_argument("--item", default=None, help="Menu item id to deduct (skipped if unset)")
    parser.add_argument("--wait", type=float, default=60.0, help="Seconds to wait for jobs")
    asyncio.run(run_simulation(parser.parse_args()))
