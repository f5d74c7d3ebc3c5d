from __future__ import annotations

import argparse
import json
import os
import sys

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


def load_env_file(env_path: str) -> None:
    if not os.path.exists(env_path):
        return
    with open(env_path, "r", encoding="utf-8") as env_file:
        for line in env_file:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key, value)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Move pending agent commissions older than a cutoff into processing."
    )
    parser.add_argument(
        "--env-file",
        default=os.path.join(PROJECT_ROOT, ".env"),
        help="Path to .env file.",
    )
    parser.add_argument("--hotel-id", required=True, help="Hotel whose commissions are batched.")
    parser.add_argument(
        "--older-than-days",
        type=int,
        default=30,
        help="Only bookings created at least this many days ago are included.",
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Write the status changes. Without it the script only lists what would move.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    load_env_file(os.path.abspath(args.env_file))

    from src.api.dependencies import get_commission_ledger_service
    from src.core.config import get_settings
    from src.core.logging import configure_logging

    configure_logging(get_settings().log_level)
    ledger = get_commission_ledger_service()
    result = ledger.process_batch(args.hotel_id, args.older_than_days, apply=args.apply)
    output = result.model_dump(by_alias=True)
    output["applied"] = args.apply
    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()
