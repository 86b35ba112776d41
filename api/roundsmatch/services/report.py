from typing import Any

from .explanations import describe_compatibility
from .formation import FormationResult
from .scoring import CompatibilityEdge


def _percentile(values: list[float], p: float) -> float | None:
    if not values:
        return None
    vals = sorted(values)
    if len(vals) == 1:
        return round(vals[0], 6)
    pos = (len(vals) - 1) * p
    lo = int(pos)
    hi = min(lo + 1, len(vals) - 1)
    frac = pos - lo
    v = vals[lo] * (1 - frac) + vals[hi] * frac
    return round(v, 6)


def percentile_summary(values: list[float]) -> dict[str, float | None]:
    return {
        "p10": _percentile(values, 0.10),
        "p25": _percentile(values, 0.25),
        "p50": _percentile(values, 0.50),
        "p75": _percentile(values, 0.75),
        "p90": _percentile(values, 0.90),
    }


def build_run_report(
    *,
    eligibility: dict[str, Any],
    edges: list[CompatibilityEdge],
    formation: FormationResult,
    persisted: list[dict[str, Any]],
    failures: list[dict[str, Any]],
    settings: dict[str, Any],
    explanations: dict[str, list[dict[str, Any]]] | None = None,
) -> dict[str, Any]:
    explanations = explanations or {}
    persisted_ids = {g["groupId"] for g in persisted}
    return {
        "eligibility": eligibility,
        "settings": settings,
        "formation": {
            "passes_run": formation.passes_run,
            "dissolved_groups": formation.dissolved_groups,
            "excluded_recent_pairs": formation.excluded_recent_pairs,
            "groups_by_pass": {
                str(n): sum(1 for g in formation.groups if g.formation_pass == n) for n in range(1, formation.passes_run + 1)
            },
        },
        "stats": {
            "edge_count": len(edges),
            "edge_scores": percentile_summary([float(e.score) for e in edges]),
            "group_averages": percentile_summary([float(g.average_score) for g in formation.groups]),
        },
        "groups": [
            {
                **g,
                "compatibility": describe_compatibility(int(g["averageCompatibility"]))["level"],
                "pairs": explanations.get(g["groupId"], []),
            }
            for g in persisted
        ],
        "persisted_group_count": len(persisted_ids),
        "unplaced": list(formation.unplaced),
        "failures": failures,
    }


def run_summary(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "run_id": str(row.get("id")),
        "week_start_date": row.get("week_start_date"),
        "status": row.get("status"),
        "trigger": row.get("trigger"),
        "forced": bool(row.get("forced")),
        "operator_id": row.get("operator_id"),
        "eligible_count": int(row.get("eligible_count") or 0),
        "groups_formed": int(row.get("groups_formed") or 0),
        "users_placed": int(row.get("users_placed") or 0),
        "users_unplaced": int(row.get("users_unplaced") or 0),
        "algorithm_version": row.get("algorithm_version"),
        "started_at": row.get("started_at"),
        "completed_at": row.get("completed_at"),
        "duration_ms": row.get("duration_ms"),
        "error_code": row.get("error_code"),
        "error_message": row.get("error_message"),
    }
