"""
Greedy constrained clustering of candidates into small groups.

Each pass walks compatibility edges by descending score (ties broken by the
canonical user-id pair), seeds a group from the best edge whose endpoints are
both free, then grows it one member at a time with the free candidate whose
average score against every current member is highest. A candidate may only
join if it has a usable edge (non-zero, not recently grouped) to every member.

Groups that stall below `min_size` are dissolved; their members sit out the
rest of the pass and are retried in the second pass with the lower acceptance
threshold. There is no third pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .scoring import CompatibilityEdge, canonical_pair, round_half_up


@dataclass(frozen=True)
class FormationParams:
    min_size: int = 2
    max_size: int = 4
    target_size: int = 3
    first_pass_min_score: int = 55
    second_pass_min_score: int = 40

    @property
    def thresholds(self) -> tuple[int, int]:
        return (self.first_pass_min_score, self.second_pass_min_score)


@dataclass(frozen=True)
class FormedGroup:
    members: tuple[str, ...]
    average_score: int
    pair_scores: tuple[tuple[str, str, int], ...]
    formation_pass: int

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass
class FormationResult:
    groups: list[FormedGroup] = field(default_factory=list)
    unplaced: list[str] = field(default_factory=list)
    dissolved_groups: int = 0
    excluded_recent_pairs: int = 0
    passes_run: int = 0

    @property
    def placed_user_ids(self) -> list[str]:
        return [uid for g in self.groups for uid in g.members]


def group_average(members: Iterable[str], scores: dict[tuple[str, str], int]) -> int:
    members = list(members)
    values = [scores[canonical_pair(members[i], members[j])] for i in range(len(members)) for j in range(i + 1, len(members))]
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def _pair_scores(members: tuple[str, ...], scores: dict[tuple[str, str], int]) -> tuple[tuple[str, str, int], ...]:
    out = []
    for i in range(len(members)):
        for j in range(i + 1, len(members)):
            a, b = canonical_pair(members[i], members[j])
            out.append((a, b, scores[(a, b)]))
    return tuple(out)


def _best_addition(
    members: list[str],
    free: list[str],
    scores: dict[tuple[str, str], int],
    threshold: int,
) -> str | None:
    best_id: str | None = None
    best_avg = -1.0
    for cid in free:
        total = 0
        usable = True
        for m in members:
            s = scores.get(canonical_pair(cid, m), 0)
            if s <= 0:
                usable = False
                break
            total += s
        if not usable:
            continue
        avg = total / len(members)
        if avg < threshold:
            continue
        # free is sorted by id, so strict > keeps the smallest id on ties.
        if avg > best_avg:
            best_avg = avg
            best_id = cid
    return best_id


def _run_pass(
    pool: list[str],
    edges: list[CompatibilityEdge],
    scores: dict[tuple[str, str], int],
    threshold: int,
    params: FormationParams,
    pass_number: int,
) -> tuple[list[FormedGroup], list[str], int]:
    pool_set = set(pool)
    ordered = sorted(
        (e for e in edges if e.user_a in pool_set and e.user_b in pool_set and e.score >= threshold),
        key=lambda e: (-e.score, e.user_a, e.user_b),
    )

    taken: set[str] = set()
    deferred: set[str] = set()
    groups: list[FormedGroup] = []
    dissolved = 0
    target = min(params.target_size, params.max_size)

    for edge in ordered:
        if edge.user_a in taken or edge.user_b in taken:
            continue
        if edge.user_a in deferred or edge.user_b in deferred:
            continue

        members = [edge.user_a, edge.user_b]
        while len(members) < target:
            free = sorted(uid for uid in pool_set if uid not in taken and uid not in deferred and uid not in members)
            nxt = _best_addition(members, free, scores, threshold)
            if nxt is None:
                break
            members.append(nxt)

        if len(members) < params.min_size:
            deferred.update(members)
            dissolved += 1
            continue

        members_t = tuple(members)
        taken.update(members_t)
        groups.append(
            FormedGroup(
                members=members_t,
                average_score=group_average(members_t, scores),
                pair_scores=_pair_scores(members_t, scores),
                formation_pass=pass_number,
            )
        )

    leftover = [uid for uid in pool if uid not in taken]
    return groups, leftover, dissolved


def form_groups(
    candidate_ids: list[str],
    edges: list[CompatibilityEdge],
    recent_pairs: set[tuple[str, str]],
    params: FormationParams,
) -> FormationResult:
    result = FormationResult()

    usable: list[CompatibilityEdge] = []
    for e in edges:
        if e.score <= 0:
            continue
        if canonical_pair(e.user_a, e.user_b) in recent_pairs:
            result.excluded_recent_pairs += 1
            continue
        usable.append(e)
    scores = {canonical_pair(e.user_a, e.user_b): e.score for e in usable}

    pool = list(dict.fromkeys(candidate_ids))
    for pass_number, threshold in enumerate(params.thresholds, start=1):
        if len(pool) < params.min_size:
            break
        result.passes_run = pass_number
        groups, pool, dissolved = _run_pass(pool, usable, scores, threshold, params, pass_number)
        result.groups.extend(groups)
        result.dissolved_groups += dissolved

    result.unplaced = pool
    return result
