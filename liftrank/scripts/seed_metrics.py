#!/usr/bin/env python3
"""
Seed a running ranking service with synthetic users.

Usage:
    python -m liftrank.scripts.seed_metrics \\
        --backend-url http://localhost:8000 \\
        --users 200 \\
        --admin-key <admin_key>

Prerequisites:
    - Backend running on --backend-url with ALLOW_USER_ID_HEADER enabled
    - Admin key (or omit --admin-key to skip the final recalculation)
"""
import argparse
import random
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx


def synthetic_metrics(rng: random.Random, now: datetime) -> Dict[str, Any]:
    """One user's worth of plausible metrics (camelCase wire fields)."""
    days_since_workout = rng.choice([0, 1, 2, 3, 5, 9, 14, 21, 45])
    return {
        "maxWeightLifted": round(rng.uniform(20, 450), 1),
        "totalWorkouts": rng.randint(0, 150),
        "workoutStreak": rng.randint(0, 40),
        "consistencyScore": round(rng.uniform(0, 100), 1),
        "improvementRate": round(rng.uniform(0, 60), 1),
        "totalCaloriesBurned": round(rng.uniform(0, 120_000), 0),
        "averageHeartRate": round(rng.uniform(90, 175), 0),
        "flexibilityScore": round(rng.uniform(0, 100), 1),
        "enduranceScore": round(rng.uniform(0, 100), 1),
        "lastWorkoutDate": (now - timedelta(days=days_since_workout)).isoformat(),
    }


def seed(backend_url: str, users: int, seed_value: int, admin_key: Optional[str], prefix: str) -> int:
    rng = random.Random(seed_value)
    now = datetime.now(timezone.utc)
    failures = 0
    with httpx.Client(base_url=backend_url.rstrip("/"), timeout=30.0) as client:
        for index in range(users):
            user_id = f"{prefix}{index:05d}"
            response = client.post(
                "/api/update-user-metrics",
                json=synthetic_metrics(rng, now),
                headers={"X-User-Id": user_id},
            )
            if response.status_code != 200:
                failures += 1
                print(f"❌ {user_id}: {response.status_code} {response.text[:200]}")

        print(f"✅ Seeded {users - failures}/{users} users")

        if admin_key:
            response = client.post("/api/recalculate-rankings", headers={"X-Admin-Key": admin_key})
            print(f"{'✅' if response.status_code == 200 else '❌'} Recalculate: {response.status_code} {response.text[:200]}")
            if response.status_code != 200:
                failures += 1
    return failures


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed synthetic fitness metrics")
    parser.add_argument("--backend-url", default="http://localhost:8000")
    parser.add_argument("--users", type=int, default=100)
    parser.add_argument("--seed", type=int, default=42, help="Random seed for reproducible data")
    parser.add_argument("--admin-key", default=None)
    parser.add_argument("--prefix", default="seed_user_")
    args = parser.parse_args(argv)

    if args.users < 1:
        parser.error("--users must be positive")

    failures = seed(args.backend_url, args.users, args.seed, args.admin_key, args.prefix)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
