# scripts/gas_admin.py
import argparse
import json
import os
import sys
from decimal import Decimal, InvalidOperation

import httpx

MIST_PER_SUI = 10**9


def to_mist(value: str, unit: str) -> str:
    """Exact conversion to an integer MIST string; fractional MIST is rejected."""
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value}")
    if unit == "sui":
        amount = amount * MIST_PER_SUI
    if amount <= 0 or amount != amount.to_integral_value():
        raise argparse.ArgumentTypeError(f"{value} {unit} is not a positive whole number of MIST")
    return str(int(amount))


def main() -> None:
    parser = argparse.ArgumentParser(description="Gas station administration")
    parser.add_argument("--base-url", default=os.environ.get("MINTGATE_URL", "http://127.0.0.1:8000"))
    parser.add_argument("--api-key", default=os.environ.get("ADMIN_API_KEY"))
    parser.add_argument("--sui", action="store_true", help="amounts are in SUI instead of MIST")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("state")

    p = sub.add_parser("add-balance")
    p.add_argument("amount")

    p = sub.add_parser("allocate")
    p.add_argument("event_id")
    p.add_argument("amount")
    p.add_argument("max_gas_per_tx")

    p = sub.add_parser("reclaim")
    p.add_argument("event_id")
    p.add_argument("amount", nargs="?")

    args = parser.parse_args()
    unit = "sui" if args.sui else "mist"
    headers = {"X-API-Key": args.api_key} if args.api_key else {}

    try:
        with httpx.Client(base_url=args.base_url, headers=headers, timeout=10.0) as client:
            if args.command == "state":
                r = client.get("/admin/gas-station")
            elif args.command == "add-balance":
                r = client.post("/admin/gas-station/balance", json={"amount": to_mist(args.amount, unit)})
            elif args.command == "allocate":
                r = client.post("/admin/gas-station/allocations", json={
                    "event_id": args.event_id,
                    "amount": to_mist(args.amount, unit),
                    "max_gas_per_tx": to_mist(args.max_gas_per_tx, unit),
                })
            else:
                body = {"amount": to_mist(args.amount, unit)} if args.amount else {}
                r = client.post(f"/admin/gas-station/allocations/{args.event_id}/reclaim", json=body)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    print(json.dumps(r.json(), indent=2))
    if r.is_error:
        sys.exit(1)


if __name__ == "__main__":
    main()
