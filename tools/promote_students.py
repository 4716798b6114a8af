"""
Promote students to the next form/semester from the command line.

Usage:
  python tools/promote_students.py --target-year 2026/2027

Optional:
  python tools/promote_students.py --from-form 1 --from-semester 2 --to-semester 1 --dry-run
"""

import argparse
import logging
import os
import sys
from typing import Sequence

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import promotion  # noqa: E402
from db import PostgresClient, SchoolDataError  # noqa: E402


def parse_args(argv: Sequence[str] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Promote every active student of one form/semester.")
    parser.add_argument("--database-url", default=os.environ.get("DATABASE_URL", ""), help="PostgreSQL URL")
    parser.add_argument("--current-year", default="", help="Academic year being closed (logged only)")
    parser.add_argument("--target-year", default="", help="Academic year of the target classes")
    parser.add_argument("--from-form", type=int, default=1)
    parser.add_argument("--from-semester", type=int, default=2)
    parser.add_argument("--to-form", type=int, default=None, help="Defaults to from-form + 1")
    parser.add_argument("--to-semester", type=int, default=1)
    parser.add_argument("--dry-run", action="store_true", help="Show the plan, do not move anyone")
    return parser.parse_args(argv)


def print_plan(plan) -> None:
    by_target = {}
    for row in plan:
        key = (row.get("source_class"), row.get("target_class"), row.get("target_exists"))
        by_target[key] = by_target.get(key, 0) + 1
    for (source, target, exists), count in sorted(by_target.items(), key=lambda item: str(item[0])):
        state = "existing" if exists else "new"
        print(f"{source or '?'} -> {target or '?'} ({state}): {count} students")
    print(f"{len(plan)} students would be promoted.")


def main(argv: Sequence[str] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    if not args.database_url:
        print("Error: DATABASE_URL is required (or pass --database-url).", file=sys.stderr)
        return 2

    client = PostgresClient(args.database_url)
    periods = {
        "from_form": args.from_form,
        "from_semester": args.from_semester,
        "to_form": args.to_form,
        "to_semester": args.to_semester,
    }
    try:
        if args.dry_run:
            print_plan(promotion.preview_promotion(client, args.target_year, **periods))
            print("Dry run complete. No data written.")
            return 0
        result = promotion.promote_students(client, args.current_year, args.target_year, **periods)
    except SchoolDataError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(result["message"])
    if result["created_classes"]:
        print(f"Created classes: {', '.join(str(i) for i in result['created_classes'])}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
