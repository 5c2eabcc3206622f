"""Domain models shared by the corpus, matching, sync and notification layers."""

from .models import (
    PROFILE_ATTRIBUTES,
    AttributeType,
    ChangeEvent,
    ChangeKind,
    Criterion,
    CriterionKind,
    Delta,
    DeltaOp,
    DeltaOpType,
    FlagCriterion,
    Manifest,
    ManifestEntry,
    MembershipCriterion,
    Profile,
    RangeCriterion,
    Scheme,
    SchemeLevel,
)
from .records import NotificationReason, SentNotification, SyncStatus
from .validation import check_scheme

__all__ = [
    "PROFILE_ATTRIBUTES",
    "AttributeType",
    "Profile",
    "Criterion",
    "CriterionKind",
    "RangeCriterion",
    "MembershipCriterion",
    "FlagCriterion",
    "Scheme",
    "SchemeLevel",
    "Delta",
    "DeltaOp",
    "DeltaOpType",
    "ChangeEvent",
    "ChangeKind",
    "Manifest",
    "ManifestEntry",
    "SyncStatus",
    "NotificationReason",
    "SentNotification",
    "check_scheme",
]
