from __future__ import annotations

import hashlib
import json
import math
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from .candidates import (
    ActivityLevel,
    Candidate,
    CareerStage,
    ConversationStyle,
    GenderPreference,
    IdealWeekend,
    LifeStage,
    MeetingFrequency,
    SocialEnergy,
    SpecialtyPreference,
)

FACTORS = (
    "specialty",
    "career_stage",
    "location",
    "age",
    "interests",
    "availability",
    "activity_level",
    "social_energy",
    "conversation_style",
    "life_stage",
    "preferences",
    "sports",
    "weekend",
)

# One fixed table per algorithm version. Factors missing from a table weigh 0.
WEIGHT_TABLES: dict[str, dict[str, float]] = {
    "groups-v1": {
        "specialty": 0.20,
        "interests": 0.40,
        "social_energy": 0.12,
        "conversation_style": 0.08,
        "availability": 0.10,
        "location": 0.05,
        "life_stage": 0.03,
        "activity_level": 0.02,
    },
    "groups-v2": {
        "specialty": 0.15,
        "career_stage": 0.05,
        "location": 0.10,
        "age": 0.05,
        "interests": 0.25,
        "availability": 0.10,
        "activity_level": 0.05,
        "social_energy": 0.08,
        "conversation_style": 0.07,
        "life_stage": 0.05,
        "preferences": 0.05,
    },
    "groups-v3": {
        "specialty": 0.15,
        "career_stage": 0.05,
        "location": 0.10,
        "age": 0.05,
        "interests": 0.18,
        "sports": 0.07,
        "availability": 0.10,
        "activity_level": 0.05,
        "social_energy": 0.08,
        "conversation_style": 0.07,
        "life_stage": 0.03,
        "weekend": 0.02,
        "preferences": 0.05,
    },
}

WEIGHT_SUM_TOLERANCE = 1e-6

SPECIALTY_CATEGORIES: dict[str, set[str]] = {
    "primary_care": {"general practice/family medicine", "internal medicine", "pediatrics", "geriatrics"},
    "surgical": {
        "general surgery",
        "cardiothoracic surgery",
        "neurosurgery",
        "orthopedic surgery",
        "plastic surgery",
        "urological surgery",
        "vascular surgery",
    },
    "medical": {
        "cardiology",
        "endocrinology",
        "gastroenterology",
        "hematology",
        "infectious diseases",
        "nephrology",
        "oncology",
        "pulmonology",
        "rheumatology",
    },
    "diagnostic": {"radiology", "nuclear medicine", "pathology", "laboratory medicine"},
    "emergency": {"emergency medicine", "critical care medicine", "anesthesiology", "pain medicine"},
    "mental_health": {"psychiatry", "child & adolescent psychiatry", "geriatric psychiatry", "addiction psychiatry"},
    "specialized": {
        "dermatology",
        "neurology",
        "ophthalmology",
        "otolaryngology (ent)",
        "physical medicine & rehabilitation",
    },
}

_CAREER_LADDER = {
    CareerStage.MEDICAL_STUDENT: 0,
    CareerStage.RESIDENT_1_2: 1,
    CareerStage.RESIDENT_3_PLUS: 2,
    CareerStage.FELLOW: 3,
    CareerStage.ATTENDING_0_5: 4,
    CareerStage.ATTENDING_5_PLUS: 5,
    CareerStage.PRIVATE_PRACTICE: 5,
    CareerStage.ACADEMIC_MEDICINE: 5,
}
_ACTIVITY_LADDER = {
    ActivityLevel.PREFER_NON_PHYSICAL: 0,
    ActivityLevel.OCCASIONALLY_ACTIVE: 1,
    ActivityLevel.MODERATELY_ACTIVE: 2,
    ActivityLevel.ACTIVE: 3,
    ActivityLevel.VERY_ACTIVE: 4,
}
_ENERGY_LADDER = {
    SocialEnergy.LOW_KEY_INTIMATE: 0,
    SocialEnergy.MODERATE_ENERGY_SMALL_GROUPS: 1,
    SocialEnergy.HIGH_ENERGY_BIG_GROUPS: 2,
}
_PARENT_STAGES = {LifeStage.YOUNG_CHILDREN, LifeStage.OLDER_CHILDREN}
_NON_PARENT_STAGES = {LifeStage.SINGLE_NO_KIDS, LifeStage.RELATIONSHIP_NO_KIDS, LifeStage.MARRIED_NO_KIDS}
_FREQUENCY_RANK = {
    MeetingFrequency.WEEKLY: 4.0,
    MeetingFrequency.BI_WEEKLY: 3.0,
    MeetingFrequency.FLEXIBLE: 2.5,
    MeetingFrequency.MONTHLY: 2.0,
}
_WEEKEND_FIT = {
    IdealWeekend.ADVENTURE_EXPLORATION: {IdealWeekend.ADVENTURE_EXPLORATION, IdealWeekend.SPORTS_FITNESS},
    IdealWeekend.RELAXATION_SELF_CARE: {IdealWeekend.RELAXATION_SELF_CARE, IdealWeekend.HOME_PROJECTS},
    IdealWeekend.SOCIAL_ACTIVITIES: {IdealWeekend.SOCIAL_ACTIVITIES, IdealWeekend.CULTURAL_ACTIVITIES},
    IdealWeekend.CULTURAL_ACTIVITIES: {IdealWeekend.CULTURAL_ACTIVITIES, IdealWeekend.SOCIAL_ACTIVITIES},
    IdealWeekend.SPORTS_FITNESS: {IdealWeekend.SPORTS_FITNESS, IdealWeekend.ADVENTURE_EXPLORATION},
    IdealWeekend.HOME_PROJECTS: {IdealWeekend.HOME_PROJECTS, IdealWeekend.RELAXATION_SELF_CARE},
}

NEUTRAL = 50


@dataclass(frozen=True)
class FactorBreakdown:
    specialty: int
    career_stage: int
    location: int
    age: int
    interests: int
    availability: int
    activity_level: int
    social_energy: int
    conversation_style: int
    life_stage: int
    preferences: int
    sports: int
    weekend: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class CompatibilityEdge:
    user_a: str
    user_b: str
    score: int
    factors: FactorBreakdown | None
    algorithm_version: str
    exclusion: str | None = None

    @property
    def pair(self) -> tuple[str, str]:
        return (self.user_a, self.user_b)

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_a": self.user_a,
            "user_b": self.user_b,
            "score": self.score,
            "factors": self.factors.as_dict() if self.factors else None,
            "algorithm_version": self.algorithm_version,
            "exclusion": self.exclusion,
        }


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return tuple(sorted((user_a, user_b)))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int) -> int:
    return max(0, min(100, value))


def validate_weights(weights: Mapping[str, Any]) -> list[dict[str, Any]]:
    errors: list[dict[str, Any]] = []
    if not isinstance(weights, Mapping) or not weights:
        return [{"code": "invalid_weights", "path": "factor_weights", "message": "factor weights must be a non-empty mapping"}]
    total = 0.0
    for name, raw in weights.items():
        if name not in FACTORS:
            errors.append({"code": "unknown_factor", "path": f"factor_weights.{name}", "message": f"unknown factor '{name}'"})
            continue
        try:
            w = float(raw)
        except (TypeError, ValueError):
            errors.append({"code": "invalid_weight", "path": f"factor_weights.{name}", "message": "weight must be a number"})
            continue
        if w < 0:
            errors.append({"code": "negative_weight", "path": f"factor_weights.{name}", "message": "weight must be >= 0"})
        total += w
    if not errors and abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        errors.append({"code": "weights_sum", "path": "factor_weights", "message": f"weights sum to {round(total, 6)}, expected 1.0"})
    return errors


def weights_fingerprint(weights: Mapping[str, float]) -> str:
    payload = json.dumps({k: float(weights[k]) for k in sorted(weights)}, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:8]


def resolve_weight_table(base_version: str, override: Mapping[str, Any] | None = None) -> tuple[str, dict[str, float]]:
    if override:
        weights = {str(k): float(v) for k, v in override.items()}
        return f"{base_version}+w{weights_fingerprint(weights)}", weights
    if base_version not in WEIGHT_TABLES:
        raise KeyError(base_version)
    return base_version, dict(WEIGHT_TABLES[base_version])


def hard_exclusion(a: Candidate, b: Candidate) -> str | None:
    for x, y in ((a, b), (b, a)):
        if x.gender_preference == GenderPreference.SAME_GENDER_ONLY:
            if not x.gender or not y.gender or x.gender != y.gender:
                return "same_gender_only"

    shared = bool(a.specialties & b.specialties)
    prefs = {a.specialty_preference, b.specialty_preference}
    if SpecialtyPreference.SAME_SPECIALTY in prefs and not shared:
        return "same_specialty_only"
    if SpecialtyPreference.DIFFERENT_SPECIALTIES in prefs and shared:
        return "different_specialties_only"
    return None


def _categories(specialties: frozenset[str]) -> set[str]:
    return {cat for cat, members in SPECIALTY_CATEGORIES.items() if specialties & members}


def _specialty_affinity(a: Candidate, b: Candidate) -> int:
    if not a.specialties or not b.specialties:
        return NEUTRAL
    prefs = {a.specialty_preference, b.specialty_preference}
    if a.specialties & b.specialties:
        return 100 if SpecialtyPreference.SAME_SPECIALTY in prefs else 80
    if SpecialtyPreference.DIFFERENT_SPECIALTIES in prefs:
        return 100
    if _categories(a.specialties) & _categories(b.specialties):
        return 70
    return 60


def _ladder_distance(ladder: dict[Any, int], x: Any, y: Any) -> int | None:
    if x not in ladder or y not in ladder:
        return None
    return abs(ladder[x] - ladder[y])


def _career_affinity(a: Candidate, b: Candidate) -> int:
    if a.career_stage is None or b.career_stage is None:
        return NEUTRAL
    if a.career_stage == b.career_stage:
        return 100
    diff = _ladder_distance(_CAREER_LADDER, a.career_stage, b.career_stage)
    return {0: 90, 1: 80, 2: 60, 3: 40}.get(diff, 20)


def _location_proximity(a: Candidate, b: Candidate) -> int:
    if not a.city or not b.city:
        return NEUTRAL
    return 100 if a.city.casefold() == b.city.casefold() else 30


def _age_affinity(a: Candidate, b: Candidate) -> int:
    if a.age is None or b.age is None:
        return NEUTRAL
    diff = abs(a.age - b.age)
    if diff <= 5:
        return 100
    if diff <= 10:
        return 75
    if diff <= 15:
        return 50
    return 25


def _overlap(x: frozenset[str], y: frozenset[str]) -> int:
    if not x or not y:
        return NEUTRAL
    return _clamp(round_half_up(100 * len(x & y) / min(len(x), len(y))))


def _frequency_affinity(a: Candidate, b: Candidate) -> int:
    if a.meeting_frequency is None or b.meeting_frequency is None:
        return NEUTRAL
    diff = abs(_FREQUENCY_RANK[a.meeting_frequency] - _FREQUENCY_RANK[b.meeting_frequency])
    return _clamp(round_half_up(100 * max(0.0, 1 - diff / 3)))


def _availability_affinity(a: Candidate, b: Candidate) -> int:
    # Time-slot overlap dominates; how often people want to meet tips the balance.
    return _clamp(round_half_up(0.7 * _overlap(a.availability, b.availability) + 0.3 * _frequency_affinity(a, b)))


def _sports_affinity(a: Candidate, b: Candidate) -> int:
    if not a.sports or not b.sports:
        return NEUTRAL
    ra, rb = dict(a.sports), dict(b.sports)
    common = set(ra) & set(rb)
    if not common:
        return 20
    # Shared sports count more when both people rate them highly.
    total = weight = 0.0
    for sport in sorted(common):
        w = (ra[sport] + rb[sport]) / 10
        total += min(ra[sport], rb[sport]) / 5 * w
        weight += w
    return _clamp(round_half_up(100 * total / weight))


def _weekend_affinity(a: Candidate, b: Candidate) -> int:
    w1, w2 = a.ideal_weekend, b.ideal_weekend
    if w1 is None or w2 is None:
        return NEUTRAL
    if IdealWeekend.MIX_ACTIVE_RELAXING in (w1, w2) or w2 in _WEEKEND_FIT.get(w1, ()):
        return 100
    return 30


def _activity_affinity(a: Candidate, b: Candidate) -> int:
    diff = _ladder_distance(_ACTIVITY_LADDER, a.activity_level, b.activity_level)
    if diff is None:
        return NEUTRAL
    return {0: 100, 1: 80, 2: 60}.get(diff, 30)


def _energy_affinity(a: Candidate, b: Candidate) -> int:
    if a.social_energy is None or b.social_energy is None:
        return NEUTRAL
    if a.social_energy == b.social_energy:
        return 100
    if SocialEnergy.VARIES_BY_MOOD in (a.social_energy, b.social_energy):
        return 80
    diff = _ladder_distance(_ENERGY_LADDER, a.social_energy, b.social_energy)
    return 70 if diff == 1 else 30


def _conversation_affinity(a: Candidate, b: Candidate) -> int:
    if a.conversation_style is None or b.conversation_style is None:
        return NEUTRAL
    if a.conversation_style == b.conversation_style:
        return 100
    if ConversationStyle.MIX_EVERYTHING in (a.conversation_style, b.conversation_style):
        return 80
    return 50


def _life_stage_affinity(a: Candidate, b: Candidate) -> int:
    s1, s2 = a.life_stage, b.life_stage
    if s1 is None or s2 is None:
        return NEUTRAL
    if s1 == s2:
        return 100
    if {s1, s2} <= _PARENT_STAGES or {s1, s2} <= _NON_PARENT_STAGES:
        return 80
    if LifeStage.EMPTY_NESTER in (s1, s2):
        return 70
    if LifeStage.PREFER_NOT_SAY in (s1, s2):
        return 60
    return 40


def _preference_match(a: Candidate, b: Candidate) -> int:
    # Hard preferences are already satisfied when this runs; soft ones are graded.
    scores: list[int] = []
    for x, y in ((a, b), (b, a)):
        gp = x.gender_preference
        if gp == GenderPreference.SAME_GENDER_PREFERRED:
            scores.append(100 if x.gender and x.gender == y.gender else 50)
        elif gp == GenderPreference.MIXED:
            scores.append(100 if x.gender and y.gender and x.gender != y.gender else 50)
        elif gp == GenderPreference.SAME_GENDER_ONLY:
            scores.append(100)
        if x.specialty_preference != SpecialtyPreference.NO_PREFERENCE:
            scores.append(100)
    if not scores:
        return 100
    return _clamp(round_half_up(sum(scores) / len(scores)))


def factor_breakdown(a: Candidate, b: Candidate) -> FactorBreakdown:
    return FactorBreakdown(
        specialty=_specialty_affinity(a, b),
        career_stage=_career_affinity(a, b),
        location=_location_proximity(a, b),
        age=_age_affinity(a, b),
        interests=_overlap(a.interests, b.interests),
        availability=_availability_affinity(a, b),
        activity_level=_activity_affinity(a, b),
        social_energy=_energy_affinity(a, b),
        conversation_style=_conversation_affinity(a, b),
        life_stage=_life_stage_affinity(a, b),
        preferences=_preference_match(a, b),
        sports=_sports_affinity(a, b),
        weekend=_weekend_affinity(a, b),
    )


def compute_compatibility(
    a: Candidate,
    b: Candidate,
    weights: Mapping[str, float] | None = None,
    algorithm_version: str = "groups-v2",
) -> CompatibilityEdge:
    if weights is None:
        weights = WEIGHT_TABLES[algorithm_version]
    user_a, user_b = canonical_pair(a.user_id, b.user_id)

    excluded_by = hard_exclusion(a, b)
    if excluded_by:
        return CompatibilityEdge(user_a, user_b, 0, None, algorithm_version, exclusion=excluded_by)

    factors = factor_breakdown(a, b)
    values = factors.as_dict()
    total = sum(float(weights.get(name, 0.0)) * values[name] for name in FACTORS)
    return CompatibilityEdge(user_a, user_b, _clamp(round_half_up(total)), factors, algorithm_version)


def build_compatibility_edges(
    candidates: list[Candidate],
    weights: Mapping[str, float],
    algorithm_version: str,
) -> list[CompatibilityEdge]:
    edges: list[CompatibilityEdge] = []
    for i in range(len(candidates)):
        for j in range(i + 1, len(candidates)):
            edge = compute_compatibility(candidates[i], candidates[j], weights, algorithm_version)
            if edge.score > 0:
                edges.append(edge)
    return edges
