#!/usr/bin/env python3
"""Seed a running API with sample categories and recurring expenses."""

import argparse
import asyncio
import os
import random
import sys
from datetime import date, timedelta

from dotenv import load_dotenv

from session_client import SessionManager
from token_store import FileTokenStore, MemoryTokenStore, TokenStore

CATEGORIES = ["Streaming", "Utilities", "Software", "Insurance", "Fitness", "Housing"]

SUBSCRIPTIONS = [
    ("Netflix", "15.49", "monthly", "Streaming"),
    ("Spotify Family", "16.99", "monthly", "Streaming"),
    ("Disney+", "89.99", "yearly", "Streaming"),
    ("Electricity", "74.20", "monthly", "Utilities"),
    ("Water", "48.00", "quarterly", "Utilities"),
    ("Internet", "59.99", "monthly", "Utilities"),
    ("JetBrains All Products", "289.00", "yearly", "Software"),
    ("GitHub Copilot", "10.00", "monthly", "Software"),
    ("iCloud+", "2.99", "monthly", "Software"),
    ("Car Insurance", "312.50", "quarterly", "Insurance"),
    ("Home Insurance", "420.00", "yearly", "Insurance"),
    ("Gym Membership", "39.90", "monthly", "Fitness"),
    ("Climbing Hall", "12.00", "weekly", "Fitness"),
    ("Rent", "1250.00", "monthly", None),
    ("Newspaper", "4.50", "weekly", None),
]


def random_date(days_back=120, days_ahead=60):
    """Generate random date around today (past dates exercise catch-up)."""
    return date.today() + timedelta(days=random.randint(-days_back, days_ahead))


async def seed(session: SessionManager, currency: str) -> int:
    print("=" * 60)
    print("Seeding Subscription Tracker")
    print("=" * 60)

    print(f"\n[1/2] Creating {len(CATEGORIES)} categories...")
    category_ids = {}
    for name in CATEGORIES:
        resp = await session.post("/recurring-categories/", json={"name": name})
        if resp.status_code == 201:
            category_ids[name] = resp.json()["id"]
            print(f"  Created category: {name} (ID: {category_ids[name]})")
        else:
            print(f"  Error {resp.status_code}: {resp.text[:100]}")

    print(f"\n[2/2] Creating {len(SUBSCRIPTIONS)} recurring expenses...")
    created = 0
    for name, amount, interval, category in SUBSCRIPTIONS:
        resp = await session.post("/recurring-expenses/", json={
            "name": name,
            "amount": amount,
            "currency": currency,
            "interval": interval,
            "next_billing_date": random_date().isoformat(),
            "category_id": category_ids.get(category),
        })
        if resp.status_code == 201:
            created += 1
            data = resp.json()
            print(f"  Created expense: {name} due {data['next_billing_date']} (ID: {data['id']})")
        else:
            print(f"  Error {resp.status_code}: {resp.text[:100]}")

    print(f"\nDone: {len(category_ids)} categories, {created} expenses")
    return created


def open_store(path: str | None) -> TokenStore:
    """A file store keeps a remembered session between runs."""
    if path:
        return FileTokenStore(path)
    return MemoryTokenStore()


async def run(args: argparse.Namespace) -> int:
    store = open_store(args.token_store)
    if args.api_url:
        session = SessionManager(store, args.api_url)
    else:
        session = SessionManager.from_env(store)

    async with session:
        if await session.restore():
            print("Reusing stored session")
        elif not await session.login(args.email, args.password, remember_me=bool(args.token_store)):
            print("Login failed; check the credentials and API URL")
            return 1
        await seed(session, args.currency)
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Seed the API with sample data")
    parser.add_argument("--api-url", default=None, help="API base URL (defaults to $SUBSCRIPTIONS_API_URL)")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--currency", default="EUR")
    parser.add_argument(
        "--token-store",
        default=os.getenv("TOKEN_STORE_PATH"),
        help="JSON file holding the session between runs (defaults to $TOKEN_STORE_PATH)",
    )
    args = parser.parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
