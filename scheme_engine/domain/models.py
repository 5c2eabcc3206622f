"""Core domain models for profiles, schemes, deltas and change events.

This module defines the data structures used throughout the application:
- Profile: immutable attribute snapshot of one individual
- RangeCriterion / MembershipCriterion / FlagCriterion: tagged eligibility predicates
- Scheme: one benefit programme and its eligibility criteria
- DeltaOp / Delta: add/update/remove operations moving the corpus one version forward
- ChangeEvent: one effective corpus change, emitted after a delta is applied
- ManifestEntry / Manifest: the remote authority's view of scheme content hashes
"""

from datetime import date
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel, to_snake

from scheme_engine.utils.hashing import compute_profile_hash, compute_scheme_hash


class AttributeType(str, Enum):
    """Value type of a profile attribute, used to pair criteria with attributes."""

    NUMBER = "number"
    TEXT = "text"
    FLAG = "flag"


# Profile attributes a criterion may reference, with their value type
PROFILE_ATTRIBUTES: Dict[str, AttributeType] = {
    "age": AttributeType.NUMBER,
    "gender": AttributeType.TEXT,
    "income_level": AttributeType.TEXT,
    "occupation": AttributeType.TEXT,
    "state": AttributeType.TEXT,
    "district": AttributeType.TEXT,
    "caste_category": AttributeType.TEXT,
    "has_disability": AttributeType.FLAG,
    "family_size": AttributeType.NUMBER,
    "has_land_ownership": AttributeType.FLAG,
    "land_area": AttributeType.NUMBER,
}


class Profile(BaseModel):
    """Normalized attribute snapshot describing one individual.

    Owned by the external profile collaborator and passed into matching as an
    immutable value. Accepts camelCase keys (``incomeLevel``) as well as the
    snake_case field names.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    user_id: Optional[str] = Field(None, description="Identifier used for notifications")
    age: Optional[int] = Field(None, ge=0, le=150, description="Age in years")
    gender: Optional[str] = Field(None, description="Gender label")
    income_level: Optional[str] = Field(None, description="Income bracket (e.g. BPL, APL)")
    occupation: Optional[str] = Field(None, description="Primary occupation")
    state: Optional[str] = Field(None, description="State of residence")
    district: Optional[str] = Field(None, description="District of residence")
    caste_category: Optional[str] = Field(None, description="Caste category (SC, ST, OBC, General)")
    has_disability: bool = Field(False, description="Whether the person has a disability")
    family_size: int = Field(1, ge=1, description="Number of family members")
    has_land_ownership: bool = Field(False, description="Whether the family owns land")
    land_area: Optional[float] = Field(None, ge=0, description="Land area in acres")

    @field_validator(
        "gender", "income_level", "occupation", "state", "district", "caste_category", "user_id"
    )
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        """Strip whitespace; blank strings become None."""
        if v is None:
            return None
        stripped = v.strip()
        return stripped if stripped else None

    def attribute(self, name: str) -> Any:
        """Return the value of a profile attribute by field name."""
        return getattr(self, name)

    def profile_hash(self) -> str:
        """Hash of all attributes except user_id (eligibility cache key)."""
        return compute_profile_hash(self.model_dump(mode="json"))


class CriterionKind(str, Enum):
    """Tag of an eligibility criterion variant."""

    RANGE = "range"
    MEMBERSHIP = "membership"
    FLAG = "flag"


class RangeCriterion(BaseModel):
    """Inclusive numeric range over one profile attribute."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["range"] = "range"
    mandatory: bool = True
    min: Optional[float] = None
    max: Optional[float] = None

    attribute_type: ClassVar[AttributeType] = AttributeType.NUMBER

    def problems(self) -> List[str]:
        """Return invariant violations (empty when well-formed)."""
        if self.min is None and self.max is None:
            return ["range must declare min or max"]
        if self.min is not None and self.max is not None and self.min > self.max:
            return [f"min {format_number(self.min)} > max {format_number(self.max)}"]
        return []

    def evaluate(self, value: Any) -> bool:
        if value is None or isinstance(value, bool):
            return False
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True

    def describe(self) -> str:
        """Human-readable boundary, e.g. '≥ 60' or 'between 18 and 40'."""
        if self.min is not None and self.max is not None:
            return f"between {format_number(self.min)} and {format_number(self.max)}"
        if self.min is not None:
            return f"≥ {format_number(self.min)}"
        return f"≤ {format_number(self.max)}"


class MembershipCriterion(BaseModel):
    """Set membership over a text attribute (case-insensitive)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["membership"] = "membership"
    mandatory: bool = True
    values: Tuple[str, ...] = ()

    attribute_type: ClassVar[AttributeType] = AttributeType.TEXT

    @field_validator("values")
    @classmethod
    def strip_values(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Strip whitespace and drop blank entries."""
        return tuple(item.strip() for item in v if item and item.strip())

    def problems(self) -> List[str]:
        if not self.values:
            return ["membership set must not be empty"]
        return []

    def evaluate(self, value: Any) -> bool:
        if value is None:
            return False
        folded = {item.casefold() for item in self.values}
        return str(value).strip().casefold() in folded

    def describe(self) -> str:
        return f"one of {', '.join(self.values)}"


class FlagCriterion(BaseModel):
    """Boolean flag that must equal ``expected``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["flag"] = "flag"
    mandatory: bool = True
    expected: bool = True

    attribute_type: ClassVar[AttributeType] = AttributeType.FLAG

    def problems(self) -> List[str]:
        return []

    def evaluate(self, value: Any) -> bool:
        if value is None:
            return False
        return bool(value) is self.expected

    def describe(self) -> str:
        return "yes" if self.expected else "no"


Criterion = Annotated[
    Union[RangeCriterion, MembershipCriterion, FlagCriterion],
    Field(discriminator="kind"),
]


class SchemeLevel(str, Enum):
    """Administrative tier of a scheme."""

    CENTRAL = "central"
    STATE = "state"
    DISTRICT = "district"

    @property
    def rank(self) -> int:
        """Tie-break rank: central before state before district."""
        return _LEVEL_RANK[self]


_LEVEL_RANK = {SchemeLevel.CENTRAL: 0, SchemeLevel.STATE: 1, SchemeLevel.DISTRICT: 2}


class Scheme(BaseModel):
    """One benefit programme and its eligibility criteria.

    ``criteria`` is keyed by profile attribute name; camelCase keys are
    normalised to the profile field names on input. ``content_hash`` is a
    digest over every other field, recomputed by the corpus on each write.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {
            "id": "IGNOAPS",
            "name": "Indira Gandhi National Old Age Pension Scheme",
            "category": "pension",
            "level": "central",
            "criteria": {
                "age": {"kind": "range", "min": 60},
                "incomeLevel": {"kind": "membership", "values": ["BPL"]},
            },
            "benefits": "Monthly pension",
            "isActive": True,
        }},
    )

    id: str = Field(..., description="Unique, immutable scheme identifier")
    name: str = Field("", description="Display name in the default language")
    localized_names: Dict[str, str] = Field(
        default_factory=dict, description="Display names keyed by language code"
    )
    category: str = Field(..., description="Scheme category (pension, agriculture, ...)")
    level: SchemeLevel = Field(SchemeLevel.CENTRAL, description="central, state or district")
    state: Optional[str] = Field(None, description="State scope for state/district schemes")
    district: Optional[str] = Field(None, description="District scope for district schemes")
    criteria: Dict[str, Criterion] = Field(default_factory=dict)
    benefits: str = Field("", description="Benefit description")
    application_process: str = Field("", description="How to apply")
    documents: Tuple[str, ...] = Field((), description="Documents required")
    contact: str = Field("", description="Helpline or office contact")
    deadline: Optional[date] = Field(None, description="Last date to apply")
    is_active: bool = Field(True, description="Whether the scheme accepts applications")
    content_hash: str = Field("", description="Digest over all other fields")

    @field_validator("id", "category")
    @classmethod
    def strip_required(cls, v: str) -> str:
        """Strip whitespace from required string fields."""
        if not v or not v.strip():
            raise ValueError("Field cannot be empty or whitespace-only")
        return v.strip()

    @field_validator("state", "district")
    @classmethod
    def strip_scope(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = v.strip()
        return stripped if stripped else None

    @field_validator("criteria", mode="before")
    @classmethod
    def normalize_criteria_keys(cls, v: Any) -> Any:
        """Normalise camelCase attribute names to profile field names."""
        if isinstance(v, dict):
            return {to_snake(str(key).strip()): value for key, value in v.items()}
        return v

    def compute_hash(self) -> str:
        """Compute the content hash over all fields except content_hash."""
        return compute_scheme_hash(self.model_dump(mode="json"))

    def with_computed_hash(self) -> "Scheme":
        """Return a copy whose content_hash matches its content."""
        return self.model_copy(update={"content_hash": self.compute_hash()})

    def display_name(self, language: Optional[str] = None) -> str:
        """Return the localized name, falling back to ``name`` then ``id``."""
        if language and language in self.localized_names:
            return self.localized_names[language]
        return self.name or self.id


class DeltaOpType(str, Enum):
    """Kind of delta operation."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


class DeltaOp(BaseModel):
    """One operation within a delta.

    add/update carry the full scheme payload; remove carries the content hash
    of the record being removed (or the payload, from which it is taken).
    """

    model_config = ConfigDict(frozen=True)

    op: DeltaOpType
    scheme_id: str
    payload: Optional[Scheme] = None
    content_hash: Optional[str] = None

    @model_validator(mode="after")
    def validate_shape(self):
        """Require a payload for add/update."""
        if self.op in (DeltaOpType.ADD, DeltaOpType.UPDATE) and self.payload is None:
            raise ValueError(f"{self.op.value} operation for {self.scheme_id} requires a payload")
        return self

    @property
    def expected_hash(self) -> Optional[str]:
        """Hash the op refers to: payload hash for add/update, declared hash for remove."""
        if self.payload is not None:
            return self.payload.compute_hash()
        return self.content_hash


class Delta(BaseModel):
    """Ordered list of operations transforming one corpus version into the next."""

    model_config = ConfigDict(frozen=True)

    ops: Tuple[DeltaOp, ...] = ()
    base_version: Optional[int] = Field(None, description="Version the delta was built against")

    def __len__(self) -> int:
        return len(self.ops)

    @property
    def is_empty(self) -> bool:
        return not self.ops


class ChangeKind(str, Enum):
    """Kind of corpus change."""

    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"


class ChangeEvent(BaseModel):
    """One effective corpus change produced by a successful delta."""

    model_config = ConfigDict(frozen=True)

    scheme_id: str
    kind: ChangeKind
    version: int
    previous_hash: Optional[str] = None
    new_hash: Optional[str] = None
    category: Optional[str] = None


class ManifestEntry(BaseModel):
    """Authority-declared content hash for one scheme id."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    scheme_id: str
    content_hash: str = ""
    removed: bool = False


class Manifest(BaseModel):
    """Authority manifest.

    ``complete`` manifests list every live scheme, so local ids missing from
    them are removed. Incomplete manifests only remove tombstoned entries.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    version: Optional[int] = None
    entries: Tuple[ManifestEntry, ...] = ()
    complete: bool = True

    def live_hashes(self) -> Dict[str, str]:
        """Map of scheme id to declared hash for non-removed entries."""
        return {entry.scheme_id: entry.content_hash for entry in self.entries if not entry.removed}

    def tombstones(self) -> List[str]:
        return sorted(entry.scheme_id for entry in self.entries if entry.removed)


def format_number(value: float) -> str:
    """Render 60.0 as '60' and 2.5 as '2.5'."""
    return str(int(value)) if float(value).is_integer() else str(value)
