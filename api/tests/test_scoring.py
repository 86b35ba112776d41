from roundsmatch.services.candidates import (
    CareerStage,
    GenderPreference,
    IdealWeekend,
    MeetingFrequency,
    SocialEnergy,
    SpecialtyPreference,
    candidate_from_row,
)
from roundsmatch.services.explanations import describe_compatibility, explain_edge
from roundsmatch.services.scoring import (
    FACTORS,
    WEIGHT_TABLES,
    build_compatibility_edges,
    compute_compatibility,
    hard_exclusion,
    resolve_weight_table,
    round_half_up,
    validate_weights,
)

from fakes import make_candidate, scenario_candidates, uid


def _scenario():
    return tuple(scenario_candidates())


def test_weight_tables_sum_to_one_and_cover_known_factors():
    for version, table in WEIGHT_TABLES.items():
        assert validate_weights(table) == [], version
        assert set(table) <= set(FACTORS)


def test_score_is_symmetric_and_canonical():
    a = make_candidate(7, specialties=["cardiology"], city="Boston", age=31, career_stage=CareerStage.FELLOW, interests=["hiking", "jazz"])
    b = make_candidate(3, specialties=["oncology"], city="boston", age=44, career_stage=CareerStage.RESIDENT_1_2, interests=["jazz"])
    ab = compute_compatibility(a, b)
    ba = compute_compatibility(b, a)
    assert ab.score == ba.score
    assert ab.pair == ba.pair == (uid(3), uid(7))
    assert ab.factors == ba.factors


def test_scores_stay_within_bounds():
    people = [
        make_candidate(1, specialties=["cardiology"], city="NY", age=30, social_energy=SocialEnergy.LOW_KEY_INTIMATE),
        make_candidate(2, specialties=["radiology"], city="LA", age=62, social_energy=SocialEnergy.HIGH_ENERGY_BIG_GROUPS),
        make_candidate(3, interests=["a", "b", "c"], availability=["mon_pm"]),
        make_candidate(4, interests=["a", "b", "c"], availability=["mon_pm"], specialties=["cardiology"]),
        make_candidate(5),
    ]
    for i, x in enumerate(people):
        for y in people[i + 1 :]:
            assert 0 <= compute_compatibility(x, y).score <= 100


def test_same_specialty_same_city_pair_scores_well():
    a, b, _, _ = _scenario()
    edge = compute_compatibility(a, b)
    assert edge.factors.specialty == 80
    assert edge.factors.location == 100
    assert edge.factors.preferences == 100
    assert edge.score == 62


def test_same_gender_only_is_a_hard_exclusion():
    _, _, c, d = _scenario()
    edge = compute_compatibility(c, d)
    assert edge.score == 0
    assert edge.exclusion == "same_gender_only"
    assert edge.factors is None


def test_same_gender_only_excludes_when_gender_is_unknown():
    a, _, c, _ = _scenario()
    assert hard_exclusion(a, c) == "same_gender_only"
    assert hard_exclusion(c, a) == "same_gender_only"


def test_same_gender_only_allows_matching_gender():
    x = make_candidate(10, gender="f", gender_preference=GenderPreference.SAME_GENDER_ONLY)
    y = make_candidate(11, gender="f")
    assert hard_exclusion(x, y) is None
    assert compute_compatibility(x, y).score > 0


def test_specialty_preferences_exclude_pairs():
    same = make_candidate(1, specialties=["cardiology"], specialty_preference=SpecialtyPreference.SAME_SPECIALTY)
    other = make_candidate(2, specialties=["dermatology"])
    assert compute_compatibility(same, other).exclusion == "same_specialty_only"

    different = make_candidate(3, specialties=["cardiology"], specialty_preference=SpecialtyPreference.DIFFERENT_SPECIALTIES)
    cardio = make_candidate(4, specialties=["cardiology"])
    assert compute_compatibility(different, cardio).exclusion == "different_specialties_only"
    assert compute_compatibility(different, other).score > 0


def test_build_edges_drops_excluded_pairs():
    edges = build_compatibility_edges(list(_scenario()), WEIGHT_TABLES["groups-v2"], "groups-v2")
    pairs = {e.pair for e in edges}
    assert (uid(3), uid(4)) not in pairs
    assert (uid(1), uid(3)) not in pairs
    assert (uid(1), uid(2)) in pairs
    assert all(e.score > 0 and e.algorithm_version == "groups-v2" for e in edges)


def test_algorithm_version_changes_weights():
    a = make_candidate(1, interests=["golf"], specialties=["cardiology"])
    b = make_candidate(2, interests=["golf"], specialties=["oncology"])
    v1 = compute_compatibility(a, b, algorithm_version="groups-v1")
    v2 = compute_compatibility(a, b, algorithm_version="groups-v2")
    assert v1.algorithm_version == "groups-v1"
    assert v1.score != v2.score


def test_round_half_up():
    assert round_half_up(62.5) == 63
    assert round_half_up(62.4) == 62
    assert round_half_up(0.5) == 1


def test_validate_weights_reports_each_problem():
    codes = {e["code"] for e in validate_weights({"specialty": 0.5, "interests": 0.4})}
    assert codes == {"weights_sum"}

    codes = {e["code"] for e in validate_weights({"specialty": 1.2, "interests": -0.2, "shoe_size": 0.0})}
    assert {"negative_weight", "unknown_factor"} <= codes

    assert validate_weights({}) and validate_weights({})[0]["code"] == "invalid_weights"


def test_weight_override_gets_stable_version_string():
    weights = {"specialty": 0.5, "interests": 0.5}
    v1, w1 = resolve_weight_table("groups-v2", weights)
    v2, _ = resolve_weight_table("groups-v2", dict(reversed(list(weights.items()))))
    assert v1 == v2
    assert v1.startswith("groups-v2+w") and len(v1.split("+w")[1]) == 8
    assert w1 == {"specialty": 0.5, "interests": 0.5}
    assert resolve_weight_table("groups-v1") == ("groups-v1", WEIGHT_TABLES["groups-v1"])


def test_candidate_from_row_normalizes_profile_values():
    c = candidate_from_row(
        {
            "user_id": uid(9),
            "first_name": " Ana ",
            "specialty": "Cardiology",
            "city": "  ",
            "age": "34",
            "gender": "F",
            "career_stage": "Attending-0-5",
            "social_energy_level": "varies by mood",
            "gender_preference": "same",
            "specialty_preference": "different",
            "interests": ["Hiking", None, " jazz "],
        }
    )
    assert c.first_name == "Ana"
    assert c.specialties == frozenset({"cardiology"})
    assert c.city is None
    assert c.age == 34
    assert c.gender == "f"
    assert c.career_stage == CareerStage.ATTENDING_0_5
    assert c.social_energy == SocialEnergy.VARIES_BY_MOOD
    assert c.gender_preference == GenderPreference.NO_PREFERENCE
    assert c.specialty_preference == SpecialtyPreference.DIFFERENT_SPECIALTIES
    assert c.interests == frozenset({"hiking", "jazz"})


def test_describe_compatibility_bands():
    assert describe_compatibility(95)["level"] == "excellent"
    assert describe_compatibility(90)["level"] == "excellent"
    assert describe_compatibility(85)["level"] == "great"
    assert describe_compatibility(70)["level"] == "good"
    assert describe_compatibility(60)["level"] == "decent"
    assert describe_compatibility(59)["level"] == "moderate"


def test_explain_edge_lists_reasons_and_issues():
    a, b, c, d = _scenario()
    explained = explain_edge(a, b, compute_compatibility(a, b))
    assert "Shared specialties: cardiology" in explained["reasons"]
    assert "Same city - easy to meet" in explained["reasons"]

    excluded = explain_edge(c, d, compute_compatibility(c, d))
    assert excluded["reasons"] == []
    assert "same_gender_only" in excluded["issues"][0]


def test_meeting_frequency_is_folded_into_availability():
    weekly = make_candidate(1, availability=["mon_pm"], meeting_frequency=MeetingFrequency.WEEKLY)
    also_weekly = make_candidate(2, availability=["mon_pm"], meeting_frequency=MeetingFrequency.WEEKLY)
    monthly = make_candidate(3, availability=["mon_pm"], meeting_frequency=MeetingFrequency.MONTHLY)
    unknown = make_candidate(4, availability=["mon_pm"])

    assert compute_compatibility(weekly, also_weekly).factors.availability == 100
    assert compute_compatibility(weekly, monthly).factors.availability == 80
    assert compute_compatibility(weekly, unknown).factors.availability == 85
    assert compute_compatibility(weekly, also_weekly).score > compute_compatibility(weekly, monthly).score


def test_sports_ratings_weight_shared_sports():
    keen = make_candidate(1, sports=(("golf", 2), ("tennis", 5)))
    twin = make_candidate(2, sports=(("golf", 2), ("tennis", 5)))
    casual = make_candidate(3, sports=(("tennis", 1),))
    other = make_candidate(4, sports=(("rowing", 4),))
    none = make_candidate(5)

    assert compute_compatibility(keen, twin).factors.sports == 83
    assert compute_compatibility(keen, casual).factors.sports == 20
    assert compute_compatibility(keen, other).factors.sports == 20
    assert compute_compatibility(keen, none).factors.sports == 50


def test_weekend_styles():
    adventure = make_candidate(1, ideal_weekend=IdealWeekend.ADVENTURE_EXPLORATION)
    fitness = make_candidate(2, ideal_weekend=IdealWeekend.SPORTS_FITNESS)
    relaxed = make_candidate(3, ideal_weekend=IdealWeekend.RELAXATION_SELF_CARE)
    mixed = make_candidate(4, ideal_weekend=IdealWeekend.MIX_ACTIVE_RELAXING)

    assert compute_compatibility(adventure, fitness).factors.weekend == 100
    assert compute_compatibility(adventure, relaxed).factors.weekend == 30
    assert compute_compatibility(relaxed, mixed).factors.weekend == 100
    assert compute_compatibility(adventure, make_candidate(5)).factors.weekend == 50


def test_groups_v3_weighs_sports_and_weekend():
    a = make_candidate(1, sports=(("tennis", 5),))
    b = make_candidate(2, sports=(("tennis", 5),))
    c = make_candidate(3, sports=(("chess", 3),))

    assert compute_compatibility(a, b, algorithm_version="groups-v2").score == compute_compatibility(a, c, algorithm_version="groups-v2").score
    assert compute_compatibility(a, b, algorithm_version="groups-v3").score > compute_compatibility(a, c, algorithm_version="groups-v3").score
    assert "Both into tennis" in explain_edge(a, b, compute_compatibility(a, b, algorithm_version="groups-v3"))["reasons"]


def test_candidate_from_row_reads_lifestyle_fields():
    c = candidate_from_row(
        {
            "user_id": uid(9),
            "meeting_frequency": "bi-weekly",
            "ideal_weekend": "adventurous",
            "sports_activities": {"Tennis": 5, "golf": "3", "chess": "x", "polo": 0},
        }
    )
    assert c.meeting_frequency == MeetingFrequency.BI_WEEKLY
    assert c.ideal_weekend == IdealWeekend.ADVENTURE_EXPLORATION
    assert c.sports == (("golf", 3), ("tennis", 5))

    bare = candidate_from_row({"user_id": uid(10), "meeting_frequency": "sometimes", "sports_activities": ["tennis"]})
    assert bare.meeting_frequency is None
    assert bare.sports == ()
