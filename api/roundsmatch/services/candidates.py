from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class GenderPreference(str, Enum):
    NO_PREFERENCE = "no_preference"
    SAME_GENDER_ONLY = "same_gender_only"
    SAME_GENDER_PREFERRED = "same_gender_preferred"
    MIXED = "mixed"


class SpecialtyPreference(str, Enum):
    NO_PREFERENCE = "no_preference"
    SAME_SPECIALTY = "same_specialty"
    DIFFERENT_SPECIALTIES = "different_specialties"


class CareerStage(str, Enum):
    MEDICAL_STUDENT = "medical_student"
    RESIDENT_1_2 = "resident_1_2"
    RESIDENT_3_PLUS = "resident_3_plus"
    FELLOW = "fellow"
    ATTENDING_0_5 = "attending_0_5"
    ATTENDING_5_PLUS = "attending_5_plus"
    PRIVATE_PRACTICE = "private_practice"
    ACADEMIC_MEDICINE = "academic_medicine"


class ActivityLevel(str, Enum):
    PREFER_NON_PHYSICAL = "prefer_non_physical"
    OCCASIONALLY_ACTIVE = "occasionally_active"
    MODERATELY_ACTIVE = "moderately_active"
    ACTIVE = "active"
    VERY_ACTIVE = "very_active"


class SocialEnergy(str, Enum):
    LOW_KEY_INTIMATE = "low_key_intimate"
    MODERATE_ENERGY_SMALL_GROUPS = "moderate_energy_small_groups"
    HIGH_ENERGY_BIG_GROUPS = "high_energy_big_groups"
    VARIES_BY_MOOD = "varies_by_mood"


class ConversationStyle(str, Enum):
    DEEP_MEANINGFUL = "deep_meaningful"
    LIGHT_FUN = "light_fun"
    PROFESSIONAL_FOCUSED = "professional_focused"
    MIX_EVERYTHING = "mix_everything"


class LifeStage(str, Enum):
    SINGLE_NO_KIDS = "single_no_kids"
    RELATIONSHIP_NO_KIDS = "relationship_no_kids"
    MARRIED_NO_KIDS = "married_no_kids"
    YOUNG_CHILDREN = "young_children"
    OLDER_CHILDREN = "older_children"
    EMPTY_NESTER = "empty_nester"
    PREFER_NOT_SAY = "prefer_not_say"


class MeetingFrequency(str, Enum):
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    FLEXIBLE = "flexible"


class IdealWeekend(str, Enum):
    ADVENTURE_EXPLORATION = "adventure_exploration"
    RELAXATION_SELF_CARE = "relaxation_self_care"
    SOCIAL_ACTIVITIES = "social_activities"
    CULTURAL_ACTIVITIES = "cultural_activities"
    SPORTS_FITNESS = "sports_fitness"
    HOME_PROJECTS = "home_projects"
    MIX_ACTIVE_RELAXING = "mix_active_relaxing"


# Legacy free-text values seen in profile rows.
_GENDER_PREFERENCE_ALIASES = {
    "": GenderPreference.NO_PREFERENCE,
    "none": GenderPreference.NO_PREFERENCE,
    "any": GenderPreference.NO_PREFERENCE,
    "same_gender": GenderPreference.SAME_GENDER_ONLY,
}
_SPECIALTY_PREFERENCE_ALIASES = {
    "": SpecialtyPreference.NO_PREFERENCE,
    "none": SpecialtyPreference.NO_PREFERENCE,
    "same": SpecialtyPreference.SAME_SPECIALTY,
    "different": SpecialtyPreference.DIFFERENT_SPECIALTIES,
    "different_specialty": SpecialtyPreference.DIFFERENT_SPECIALTIES,
}
_FREQUENCY_ALIASES = {
    "biweekly": MeetingFrequency.BI_WEEKLY,
    "every_other_week": MeetingFrequency.BI_WEEKLY,
}
_WEEKEND_ALIASES = {
    "relaxing": IdealWeekend.RELAXATION_SELF_CARE,
    "adventurous": IdealWeekend.ADVENTURE_EXPLORATION,
    "social": IdealWeekend.SOCIAL_ACTIVITIES,
    "productive": IdealWeekend.HOME_PROJECTS,
}


def _slug(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower().replace("-", "_").replace(" ", "_")


def _parse_enum(enum_cls, value: Any, aliases: dict[str, Any] | None = None, default=None):
    v = _slug(value)
    if aliases and v in aliases:
        return aliases[v]
    try:
        return enum_cls(v)
    except ValueError:
        return default


def _tags(values: Any) -> frozenset[str]:
    if not isinstance(values, (list, tuple, set, frozenset)):
        return frozenset()
    out = {str(v).strip().lower() for v in values if v is not None and str(v).strip()}
    return frozenset(out)


def _ratings(values: Any) -> tuple[tuple[str, int], ...]:
    """Sport name -> interest rating (1-5); unrated or unparseable entries are dropped."""
    if not isinstance(values, dict):
        return ()
    out: dict[str, int] = {}
    for name, raw in values.items():
        key = str(name or "").strip().lower()
        try:
            rating = int(raw)
        except (TypeError, ValueError):
            continue
        if key and rating > 0:
            out[key] = min(rating, 5)
    return tuple(sorted(out.items()))


def _normalize_gender(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    return v or None


@dataclass(frozen=True)
class Candidate:
    user_id: str
    first_name: str | None = None
    specialties: frozenset[str] = field(default_factory=frozenset)
    city: str | None = None
    age: int | None = None
    gender: str | None = None
    career_stage: CareerStage | None = None
    activity_level: ActivityLevel | None = None
    social_energy: SocialEnergy | None = None
    conversation_style: ConversationStyle | None = None
    life_stage: LifeStage | None = None
    interests: frozenset[str] = field(default_factory=frozenset)
    availability: frozenset[str] = field(default_factory=frozenset)
    meeting_frequency: MeetingFrequency | None = None
    ideal_weekend: IdealWeekend | None = None
    sports: tuple[tuple[str, int], ...] = ()
    gender_preference: GenderPreference = GenderPreference.NO_PREFERENCE
    specialty_preference: SpecialtyPreference = SpecialtyPreference.NO_PREFERENCE


def candidate_from_row(row: dict[str, Any]) -> Candidate:
    specialties = _tags(row.get("specialties"))
    if not specialties and row.get("specialty"):
        specialties = _tags([row.get("specialty")])

    age = row.get("age")
    try:
        age = int(age) if age is not None else None
    except (TypeError, ValueError):
        age = None

    city = str(row.get("city") or "").strip() or None
    return Candidate(
        user_id=str(row["user_id"]),
        first_name=str(row.get("first_name") or "").strip() or None,
        specialties=specialties,
        city=city,
        age=age,
        gender=_normalize_gender(row.get("gender")),
        career_stage=_parse_enum(CareerStage, row.get("career_stage")),
        activity_level=_parse_enum(ActivityLevel, row.get("activity_level")),
        social_energy=_parse_enum(SocialEnergy, row.get("social_energy_level")),
        conversation_style=_parse_enum(ConversationStyle, row.get("conversation_style")),
        life_stage=_parse_enum(LifeStage, row.get("life_stage")),
        interests=_tags(row.get("interests")),
        availability=_tags(row.get("availability_slots")),
        meeting_frequency=_parse_enum(MeetingFrequency, row.get("meeting_frequency"), _FREQUENCY_ALIASES),
        ideal_weekend=_parse_enum(IdealWeekend, row.get("ideal_weekend"), _WEEKEND_ALIASES),
        sports=_ratings(row.get("sports_activities")),
        gender_preference=_parse_enum(
            GenderPreference,
            row.get("gender_preference"),
            _GENDER_PREFERENCE_ALIASES,
            GenderPreference.NO_PREFERENCE,
        ),
        specialty_preference=_parse_enum(
            SpecialtyPreference,
            row.get("specialty_preference"),
            _SPECIALTY_PREFERENCE_ALIASES,
            SpecialtyPreference.NO_PREFERENCE,
        ),
    )
