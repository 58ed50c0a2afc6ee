#!/usr/bin/env python3
"""
Create the mortuary trays through the API.

Usage:
    # Create trays B-01 .. B-12
    python scripts/seed_trays.py --prefix B --count 12

    # Another cold room, numbered from 13
    python scripts/seed_trays.py --prefix C --count 6 --start 13
"""

import argparse
import sys
from pathlib import Path

import requests

sys.path.append(str(Path(__file__).parent.parent / "src"))

from config import get_api_url  # noqa: E402


def health_check(api_url: str) -> bool:
    """Check if the mortuary API is available."""
    try:
        response = requests.get(f"{api_url}/health", timeout=5)
        if response.status_code == 200:
            print(f"Mortuary API healthy at {api_url}")
            return True
        else:
            print(f"Mortuary API unhealthy: {response.status_code}")
            return False
    except requests.exceptions.RequestException as e:
        print(f"Cannot reach mortuary API at {api_url}: {e}")
        return False


def create_tray(code: str, api_url: str, headers: dict, notes: str = None) -> bool:
    """Create one tray; an existing tray counts as success."""
    try:
        response = requests.post(
            f"{api_url}/api/v1/trays",
            json={"code": code, "notes": notes},
            headers=headers,
            timeout=10,
        )
    except requests.exceptions.RequestException as e:
        print(f"Request failed for {code}: {e}")
        return False

    if response.status_code == 201:
        print(f"Created tray {code}")
        return True
    if response.status_code == 409:
        print(f"Tray {code} already exists")
        return True
    print(f"Failed {code}: {response.status_code} - {response.text[:200]}")
    return False


def main():
    parser = argparse.ArgumentParser(description="Create mortuary trays through the API")
    parser.add_argument("--prefix", default="B", help="Tray code prefix (default: B)")
    parser.add_argument("--count", type=int, default=12, help="Number of trays to create (default: 12)")
    parser.add_argument("--start", type=int, default=1, help="First tray number (default: 1)")
    parser.add_argument("--notes", default=None, help="Notes stored on every tray")
    parser.add_argument("--user-id", default="seed-script", help="Value of the X-User-Id header")
    parser.add_argument("--api-url", default=None, help="API base URL (default: from API_HOST/API_PORT)")
    args = parser.parse_args()

    api_url = args.api_url or get_api_url()
    if not health_check(api_url):
        sys.exit(1)

    headers = {"X-User-Id": args.user_id, "X-User-Role": "administrator"}
    failed = 0
    for number in range(args.start, args.start + args.count):
        if not create_tray(f"{args.prefix}-{number:02d}", api_url, headers, args.notes):
            failed += 1

    print(f"Done: {args.count - failed} of {args.count} trays ready")
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
