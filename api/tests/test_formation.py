import random

from roundsmatch.services.formation import FormationParams, form_groups, group_average
from roundsmatch.services.scoring import WEIGHT_TABLES, CompatibilityEdge, build_compatibility_edges, canonical_pair

from fakes import scenario_candidates, uid


def _edge(a: int, b: int, score: int) -> CompatibilityEdge:
    x, y = canonical_pair(uid(a), uid(b))
    return CompatibilityEdge(x, y, score, None, "groups-v2")


def _ids(*ns: int) -> list[str]:
    return [uid(n) for n in ns]


PAIRS = FormationParams(min_size=2, max_size=2, target_size=2)


def test_pairs_same_specialty_and_leaves_excluded_candidates_unplaced():
    candidates = scenario_candidates()
    edges = build_compatibility_edges(candidates, WEIGHT_TABLES["groups-v2"], "groups-v2")
    result = form_groups([c.user_id for c in candidates], edges, set(), PAIRS)

    assert [g.members for g in result.groups] == [tuple(_ids(1, 2))]
    assert sorted(result.unplaced) == _ids(3, 4)


def test_ties_break_on_smallest_user_ids():
    edges = [_edge(3, 4, 70), _edge(1, 3, 70), _edge(1, 2, 70)]
    result = form_groups(_ids(1, 2, 3, 4), edges, set(), PAIRS)
    assert [g.members for g in result.groups] == [tuple(_ids(1, 2)), tuple(_ids(3, 4))]


def test_group_grows_to_target_with_best_average():
    edges = [
        _edge(1, 2, 90),
        _edge(1, 3, 80),
        _edge(2, 3, 70),
        _edge(1, 4, 85),
        _edge(2, 4, 60),
    ]
    result = form_groups(_ids(1, 2, 3, 4), edges, set(), FormationParams())
    group = result.groups[0]
    # 4 averages 72.5 against {1, 2}; 3 averages 75.
    assert group.members == tuple(_ids(1, 2, 3))
    assert group.average_score == 80
    assert result.unplaced == _ids(4)


def test_candidate_needs_an_edge_to_every_member():
    edges = [_edge(1, 2, 90), _edge(1, 3, 95)]
    result = form_groups(_ids(1, 2, 3), edges, set(), FormationParams())
    assert result.groups[0].members == tuple(_ids(1, 3))
    assert uid(2) in result.unplaced


def test_recent_pairs_are_never_grouped_again():
    edges = [_edge(1, 2, 99), _edge(1, 3, 60), _edge(2, 4, 60), _edge(3, 4, 50)]
    recent = {canonical_pair(uid(1), uid(2))}
    result = form_groups(_ids(1, 2, 3, 4), edges, recent, PAIRS)
    grouped = {g.members for g in result.groups}
    assert tuple(_ids(1, 2)) not in grouped
    assert result.excluded_recent_pairs == 1
    assert grouped == {tuple(_ids(1, 3)), tuple(_ids(2, 4))}


def test_second_pass_uses_lower_threshold():
    edges = [_edge(1, 2, 80), _edge(3, 4, 45)]
    result = form_groups(_ids(1, 2, 3, 4), edges, set(), PAIRS)
    by_pass = {g.members: g.formation_pass for g in result.groups}
    assert by_pass == {tuple(_ids(1, 2)): 1, tuple(_ids(3, 4)): 2}
    assert result.passes_run == 2
    assert result.unplaced == []


def test_scores_below_second_threshold_stay_unplaced():
    result = form_groups(_ids(1, 2), [_edge(1, 2, 39)], set(), PAIRS)
    assert result.groups == []
    assert result.unplaced == _ids(1, 2)


def test_undersized_groups_are_dissolved_in_each_pass():
    params = FormationParams(min_size=3, max_size=4, target_size=3)
    result = form_groups(_ids(1, 2, 3), [_edge(1, 2, 90)], set(), params)
    assert result.groups == []
    assert result.dissolved_groups == 2
    assert result.passes_run == 2
    assert sorted(result.unplaced) == _ids(1, 2, 3)


def test_no_third_pass_and_small_pool_short_circuits():
    result = form_groups(_ids(1), [], set(), PAIRS)
    assert result.passes_run == 0
    assert result.unplaced == _ids(1)


def _synthetic(n: int) -> list[CompatibilityEdge]:
    edges = []
    for i in range(1, n + 1):
        for j in range(i + 1, n + 1):
            score = (i * 37 + j * 11) % 101
            if score:
                edges.append(_edge(i, j, score))
    return edges


def test_groups_are_disjoint_and_within_size_bounds():
    params = FormationParams(min_size=2, max_size=4, target_size=4)
    ids = _ids(*range(1, 41))
    result = form_groups(ids, _synthetic(40), set(), params)

    placed = result.placed_user_ids
    assert len(placed) == len(set(placed))
    assert set(placed).isdisjoint(result.unplaced)
    assert sorted(placed + result.unplaced) == sorted(ids)
    for g in result.groups:
        assert params.min_size <= g.size <= params.max_size
        assert all(score > 0 for _, _, score in g.pair_scores)


def test_formation_is_deterministic_for_shuffled_input():
    ids = _ids(*range(1, 31))
    edges = _synthetic(30)
    baseline = form_groups(ids, edges, set(), FormationParams())

    rng = random.Random(7)
    for _ in range(3):
        shuffled = edges[:]
        rng.shuffle(shuffled)
        again = form_groups(ids, shuffled, set(), FormationParams())
        assert [g.members for g in again.groups] == [g.members for g in baseline.groups]
        assert sorted(again.unplaced) == sorted(baseline.unplaced)


def test_group_average_rounds_half_up():
    scores = {canonical_pair(uid(1), uid(2)): 70, canonical_pair(uid(1), uid(3)): 71}
    assert group_average([uid(1), uid(2)], scores) == 70
    scores[canonical_pair(uid(2), uid(3))] = 70
    # (70 + 71 + 70) / 3 = 70.33
    assert group_average([uid(1), uid(2), uid(3)], scores) == 70
    assert group_average([uid(1)], scores) == 0
