from __future__ import annotations

from typing import Any

from .candidates import Candidate
from .scoring import CompatibilityEdge

BANDS = (
    (90, "excellent", "Excellent match! You have tons in common"),
    (80, "great", "Great match! Strong compatibility"),
    (70, "good", "Good match! Several shared interests"),
    (60, "decent", "Decent match! Some common ground"),
)


def describe_compatibility(score: int) -> dict[str, Any]:
    for floor, level, text in BANDS:
        if score >= floor:
            return {"percentage": score, "level": level, "description": text}
    return {"percentage": score, "level": "moderate", "description": "Moderate match! Room to explore differences"}


def explain_edge(a: Candidate, b: Candidate, edge: CompatibilityEdge) -> dict[str, list[str]]:
    reasons: list[str] = []
    issues: list[str] = []

    if edge.exclusion:
        issues.append(f"Excluded by stated preference ({edge.exclusion})")
        return {"reasons": reasons, "issues": issues}

    shared = sorted(a.specialties & b.specialties)
    if shared:
        reasons.append(f"Shared specialties: {', '.join(shared)}")

    f = edge.factors
    if f is not None:
        if f.specialty < 40:
            issues.append("Low specialty compatibility")
        if f.career_stage >= 80:
            reasons.append("Similar career stages")
        elif f.career_stage < 40:
            issues.append("Significant career stage difference")
        if f.location == 100:
            reasons.append("Same city - easy to meet")
        elif f.location < 50:
            issues.append("Different cities - may limit meeting frequency")
        if f.interests >= 70:
            reasons.append("Many shared interests")
        if f.availability >= 70:
            reasons.append("Overlapping availability")
        if f.sports >= 70:
            shared_sports = sorted(set(dict(a.sports)) & set(dict(b.sports)))
            reasons.append(f"Both into {', '.join(shared_sports)}")
        if f.weekend == 100:
            reasons.append("Similar idea of a good weekend")

    if edge.score >= 80:
        reasons.append("Excellent overall compatibility")
    elif edge.score < 50:
        issues.append("Low overall compatibility")
    return {"reasons": reasons, "issues": issues}


def build_welcome_message(members: list[Candidate]) -> str:
    names = ", ".join(m.first_name or "there" for m in members)
    specialties = sorted({s for m in members for s in m.specialties})
    specialty_line = f" based on your specialties ({', '.join(specialties)}) and" if specialties else " based on"
    return (
        f"Welcome to your group, {names}!\n\n"
        f"You've been matched{specialty_line} shared interests.\n\n"
        "A few conversation starters:\n"
        "- What's the most interesting case you've seen this week?\n"
        "- Any conferences or learning opportunities coming up?\n"
        "- What do you like to do to unwind after long shifts?\n\n"
        "When you're ready to meet up, share your availability here."
    )


def explain_group(
    member_ids: tuple[str, ...] | list[str],
    candidates_by_id: dict[str, Candidate],
    edges_by_pair: dict[tuple[str, str], CompatibilityEdge],
) -> list[dict[str, Any]]:
    """Per-pair reasons for one group, so an operator can say why two members were placed together."""
    out: list[dict[str, Any]] = []
    members = sorted(member_ids)
    for i, user_a in enumerate(members):
        for user_b in members[i + 1 :]:
            edge = edges_by_pair.get((user_a, user_b))
            a, b = candidates_by_id.get(user_a), candidates_by_id.get(user_b)
            if edge is None or a is None or b is None:
                continue
            out.append({"user_a": user_a, "user_b": user_b, "score": edge.score, **explain_edge(a, b, edge)})
    return out
