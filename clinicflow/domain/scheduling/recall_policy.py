"""Recall intervals and due-date calculation"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Mapping, Optional

from .errors import UnknownTreatmentError
from .schemas import PatientModifiers

MIN_REDUCED_INTERVAL_DAYS = 7
HIGH_RISK_PERCENT = 80
MEDIUM_RISK_PERCENT = 90


@dataclass(frozen=True)
class TreatmentPolicy:
    key: str
    label: str
    interval_days: int


TREATMENT_POLICIES: Dict[str, TreatmentPolicy] = {
    policy.key: policy
    for policy in (
        TreatmentPolicy("cleaning_6m", "Cleaning (6 months)", 182),
        TreatmentPolicy("filling_follow_up_2w", "Filling follow-up", 14),
        TreatmentPolicy("root_canal_check_3w", "Root canal check", 21),
        TreatmentPolicy("implant_review_2w", "Implant review (2 weeks)", 14),
        TreatmentPolicy("implant_review_3m", "Implant review (3 months)", 90),
        TreatmentPolicy("ortho_adjust_5w", "Orthodontic adjustment", 35),
        TreatmentPolicy("extraction_follow_up_9d", "Extraction follow-up", 9),
        TreatmentPolicy("general_exam_12m", "General exam (12 months)", 365),
    )
}

# Short names used by older clients
TREATMENT_ALIASES = {
    "cleaning": "cleaning_6m",
    "filling_follow_up": "filling_follow_up_2w",
    "root_canal_check": "root_canal_check_3w",
    "implant_review_short": "implant_review_2w",
    "implant_review_long": "implant_review_3m",
    "ortho_adjust": "ortho_adjust_5w",
    "extraction_follow_up": "extraction_follow_up_9d",
    "general_exam": "general_exam_12m",
}


def get_treatment_policy(treatment_key: str) -> TreatmentPolicy:
    key = (treatment_key or "").strip().lower()
    key = TREATMENT_ALIASES.get(key, key)
    policy = TREATMENT_POLICIES.get(key)
    if policy is None:
        raise UnknownTreatmentError(f"Unknown treatment type: {treatment_key}")
    return policy


def _percent_of(days: int, percent: int) -> int:
    # half-up rounding on integers
    return (days * percent + 50) // 100


def compute_interval_days(base_days: int, modifiers: Optional[PatientModifiers] = None) -> int:
    """
    Apply the patient's risk tier to a base interval.

    The first matching tier wins and reductions never stack: smokers and high
    periodontal risk get 80% (never below 7 days), medium risk gets 90%.
    """
    if modifiers is None:
        return base_days
    if modifiers.isSmoker or modifiers.perioRisk == "high":
        return max(MIN_REDUCED_INTERVAL_DAYS, _percent_of(base_days, HIGH_RISK_PERCENT))
    if modifiers.perioRisk == "medium":
        return _percent_of(base_days, MEDIUM_RISK_PERCENT)
    return base_days


def compute_due_date(
    base_date: date,
    treatment_key: str,
    modifiers: Optional[PatientModifiers] = None,
    intervals: Optional[Mapping[str, int]] = None,
) -> date:
    """Date the next visit is due; weekends/holidays are left to slot selection"""
    if intervals is not None and treatment_key in intervals:
        base_days = intervals[treatment_key]
    else:
        base_days = get_treatment_policy(treatment_key).interval_days
    return base_date + timedelta(days=compute_interval_days(base_days, modifiers))
