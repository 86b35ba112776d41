import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from roundsmatch.deps import build_orchestrator


def main() -> None:
    failed = build_orchestrator().fail_stuck_runs()
    print(json.dumps({"failed_run_ids": failed}, indent=2))


if __name__ == "__main__":
    main()
