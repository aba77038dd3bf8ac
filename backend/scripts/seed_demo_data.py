"""
Seed Demo Data — Creates a few farms with stock and one pending transfer.

Run: python scripts/seed_demo_data.py [--transfers 3]
"""

import argparse
import asyncio
import random

from core.config import get_settings
from docstore import SqlDocumentStore, build_store
from transfers.models import Actor, Priority
from transfers.service import TransferService

settings = get_settings()

# Seed data constants
FARMS = ["North Pasture", "River Bend", "Hilltop Orchard", "Central Depot"]
ITEMS = [
    ("helmet", "pieces"),
    ("fertilizer", "kg"),
    ("seed potatoes", "kg"),
    ("fence posts", "pieces"),
    ("diesel", "l"),
]


async def seed_data(transfer_count: int, seed: int):
    """Create demo data for development."""
    rng = random.Random(seed)
    store = build_store(settings)
    try:
        if isinstance(store, SqlDocumentStore):
            await store.create_schema()
        service = TransferService.from_settings(store, settings)
        admin = Actor(user_id="seed-script", name="Seed Script", role="admin")

        # ── Locations ────────────────────────────────────────
        locations = [await service.add_location(name) for name in FARMS]

        # ── Stock ────────────────────────────────────────────
        line_count = 0
        for location in locations:
            for item_name, unit in rng.sample(ITEMS, k=3):
                await service.add_stock(location.id, item_name, rng.randint(20, 500), unit)
                line_count += 1

        # ── Pending transfers ────────────────────────────────
        created = 0
        for _ in range(transfer_count):
            source, destination = rng.sample(locations, k=2)
            lines = await service.get_inventory(source.id)
            line = rng.choice(lines)
            await service.create_transfer(
                admin,
                source.id,
                destination.id,
                line.item_name,
                max(1, line.quantity // 10),
                rng.choice(list(Priority)),
                "Seeded demo transfer",
            )
            created += 1

        print(f"✅ Seeded: {len(locations)} locations, {line_count} stock lines, {created} pending transfers")
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="Seed FarmStock demo data")
    parser.add_argument("--transfers", type=int, default=3, help="Pending transfers to create")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    args = parser.parse_args()
    asyncio.run(seed_data(args.transfers, args.seed))


if __name__ == "__main__":
    main()
