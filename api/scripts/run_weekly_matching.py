import argparse
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from roundsmatch.deps import build_orchestrator
from roundsmatch.errors import MatchingError
from roundsmatch.services.orchestrator import RunTrigger
from roundsmatch.services.schedule import parse_week_identifier


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the weekly group matching batch")
    parser.add_argument("--week", default=None, help="YYYY-MM-DD or YYYY-Www (default: current week)")
    parser.add_argument("--force", action="store_true", help="supersede an existing run for the week")
    parser.add_argument("--operator", default=None, help="operator id recorded on a forced run")
    args = parser.parse_args()

    trigger = RunTrigger(
        week_start_date=parse_week_identifier(args.week) if args.week else None,
        forced=args.force,
        operator_id=args.operator,
    )
    try:
        result = build_orchestrator().run(trigger)
    except MatchingError as exc:
        print(json.dumps({"error": exc.code, "message": exc.message, "details": exc.details}, indent=2, default=str))
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("status") != "failed" else 1


if __name__ == "__main__":
    sys.exit(main())
