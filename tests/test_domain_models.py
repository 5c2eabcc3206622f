"""Unit tests for domain models and scheme validation."""

from datetime import date

import pytest
from pydantic import ValidationError

from scheme_engine.domain import (
    ChangeEvent,
    ChangeKind,
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
    check_scheme,
)
from tests.helpers import make_scheme, senior_scheme


class TestProfile:
    """Tests for Profile model."""

    def test_accepts_camel_case_keys(self):
        profile = Profile.model_validate({"incomeLevel": "BPL", "hasDisability": True, "userId": "u1"})

        assert profile.income_level == "BPL"
        assert profile.has_disability is True
        assert profile.user_id == "u1"

    def test_accepts_snake_case_field_names(self):
        profile = Profile(income_level="APL", family_size=4)

        assert profile.income_level == "APL"
        assert profile.family_size == 4

    def test_blank_text_becomes_none(self):
        profile = Profile(state="   ", district=" Khordha ")

        assert profile.state is None
        assert profile.district == "Khordha"

    def test_profile_is_immutable(self):
        profile = Profile(age=30)

        with pytest.raises(ValidationError):
            profile.age = 31

    def test_rejects_negative_age(self):
        with pytest.raises(ValidationError):
            Profile(age=-1)

    def test_profile_hash_ignores_user_id(self):
        first = Profile(user_id="a", age=40, state="Kerala")
        second = Profile(user_id="b", age=40, state="Kerala")

        assert first.profile_hash() == second.profile_hash()

    def test_profile_hash_changes_with_attributes(self):
        assert Profile(age=40).profile_hash() != Profile(age=41).profile_hash()


class TestCriteria:
    """Tests for the criterion variants."""

    def test_range_inclusive_bounds(self):
        criterion = RangeCriterion(min=18, max=40)

        assert criterion.evaluate(18)
        assert criterion.evaluate(40)
        assert not criterion.evaluate(17)
        assert not criterion.evaluate(41)

    def test_range_open_ended(self):
        assert RangeCriterion(min=60).evaluate(99)
        assert RangeCriterion(max=2.5).evaluate(0)

    def test_range_missing_value_fails(self):
        assert not RangeCriterion(min=0).evaluate(None)

    def test_range_rejects_booleans(self):
        assert not RangeCriterion(min=0).evaluate(True)

    def test_range_problems(self):
        assert RangeCriterion(min=50, max=30).problems() == ["min 50 > max 30"]
        assert RangeCriterion().problems() == ["range must declare min or max"]
        assert RangeCriterion(min=1, max=1).problems() == []

    def test_range_describe(self):
        assert RangeCriterion(min=60).describe() == "≥ 60"
        assert RangeCriterion(max=2.5).describe() == "≤ 2.5"
        assert RangeCriterion(min=18, max=40).describe() == "between 18 and 40"

    def test_membership_is_case_insensitive(self):
        criterion = MembershipCriterion(values=("BPL", "AAY"))

        assert criterion.evaluate("bpl")
        assert criterion.evaluate(" AAY ")
        assert not criterion.evaluate("APL")
        assert not criterion.evaluate(None)

    def test_membership_empty_set_is_a_problem(self):
        criterion = MembershipCriterion(values=("  ",))

        assert criterion.values == ()
        assert criterion.problems() == ["membership set must not be empty"]

    def test_flag_expected_value(self):
        assert FlagCriterion(expected=True).evaluate(True)
        assert not FlagCriterion(expected=True).evaluate(False)
        assert FlagCriterion(expected=False).evaluate(False)
        assert FlagCriterion().describe() == "yes"

    def test_criteria_discriminated_by_kind(self):
        scheme = make_scheme(
            criteria={
                "age": {"kind": "range", "min": 60},
                "gender": {"kind": "membership", "values": ["female"]},
                "hasDisability": {"kind": "flag", "expected": True, "mandatory": False},
            }
        )

        assert isinstance(scheme.criteria["age"], RangeCriterion)
        assert isinstance(scheme.criteria["gender"], MembershipCriterion)
        assert isinstance(scheme.criteria["has_disability"], FlagCriterion)
        assert scheme.criteria["has_disability"].mandatory is False

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            make_scheme(criteria={"age": {"kind": "regex", "pattern": ".*"}})


class TestScheme:
    """Tests for Scheme model."""

    def test_camel_case_criteria_keys_normalized(self):
        scheme = senior_scheme()

        assert set(scheme.criteria) == {"age", "income_level"}

    def test_required_fields_stripped(self):
        scheme = make_scheme("  S9  ", category=" housing ")

        assert scheme.id == "S9"
        assert scheme.category == "housing"

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            make_scheme("   ")

    def test_content_hash_is_computed(self):
        scheme = make_scheme()

        assert len(scheme.content_hash) == 64
        assert scheme.content_hash == scheme.compute_hash()

    def test_content_hash_ignores_stored_hash(self):
        scheme = make_scheme()
        stale = scheme.model_copy(update={"content_hash": "bogus"})

        assert stale.compute_hash() == scheme.content_hash

    def test_content_hash_covers_every_field(self):
        base = make_scheme()

        assert make_scheme(benefits="Other").content_hash != base.content_hash
        assert make_scheme(deadline=date(2030, 1, 1)).content_hash != base.content_hash
        assert make_scheme(is_active=False).content_hash != base.content_hash
        assert make_scheme(documents=("Aadhaar",)).content_hash != base.content_hash

    def test_camel_and_snake_payloads_hash_identically(self):
        camel = Scheme.model_validate(
            {"id": "S1", "category": "x", "criteria": {"incomeLevel": {"kind": "membership", "values": ["BPL"]}}}
        )
        snake = Scheme.model_validate(
            {"id": "S1", "category": "x", "criteria": {"income_level": {"kind": "membership", "values": ["BPL"]}}}
        )

        assert camel.compute_hash() == snake.compute_hash()

    def test_display_name_fallbacks(self):
        scheme = make_scheme("S1", name="", localized_names={"hi": "योजना"})

        assert scheme.display_name("hi") == "योजना"
        assert scheme.display_name("ta") == "S1"

    def test_level_rank_order(self):
        assert SchemeLevel.CENTRAL.rank < SchemeLevel.STATE.rank < SchemeLevel.DISTRICT.rank


class TestCheckScheme:
    """Tests for check_scheme."""

    def test_valid_scheme_has_no_problems(self):
        assert check_scheme(senior_scheme()) == []

    def test_inverted_range(self):
        scheme = make_scheme(criteria={"age": {"kind": "range", "min": 50, "max": 30}})

        assert check_scheme(scheme) == ["criteria.age: min 50 > max 30"]

    def test_unknown_attribute(self):
        scheme = make_scheme(criteria={"shoeSize": {"kind": "range", "min": 1}})

        assert check_scheme(scheme) == ["criteria.shoe_size: unknown profile attribute"]

    def test_kind_mismatch(self):
        scheme = make_scheme(criteria={"age": {"kind": "membership", "values": ["60"]}})

        problems = check_scheme(scheme)
        assert len(problems) == 1
        assert problems[0].startswith("criteria.age: membership criterion cannot apply")

    def test_state_scheme_requires_state(self):
        scheme = make_scheme(level="state")

        assert check_scheme(scheme) == ["state: required for state-level schemes"]

    def test_district_scheme_requires_state_and_district(self):
        scheme = make_scheme(level="district")

        assert check_scheme(scheme) == [
            "state: required for district-level schemes",
            "district: required for district-level schemes",
        ]


class TestDeltaAndManifest:
    """Tests for delta operations and manifests."""

    def test_add_requires_payload(self):
        with pytest.raises(ValidationError):
            DeltaOp(op=DeltaOpType.ADD, scheme_id="S1")

    def test_remove_without_payload(self):
        op = DeltaOp(op=DeltaOpType.REMOVE, scheme_id="S1", content_hash="abc")

        assert op.expected_hash == "abc"

    def test_expected_hash_from_payload(self):
        scheme = make_scheme()
        op = DeltaOp(op=DeltaOpType.UPDATE, scheme_id="S1", payload=scheme)

        assert op.expected_hash == scheme.content_hash

    def test_manifest_live_hashes_and_tombstones(self):
        manifest = Manifest.model_validate(
            {
                "version": 3,
                "entries": [
                    {"schemeId": "A", "contentHash": "h1"},
                    {"schemeId": "C", "removed": True},
                    {"schemeId": "B", "contentHash": "h2"},
                ],
            }
        )

        assert manifest.live_hashes() == {"A": "h1", "B": "h2"}
        assert manifest.tombstones() == ["C"]
        assert manifest.complete is True

    def test_change_event_is_frozen(self):
        event = ChangeEvent(scheme_id="S1", kind=ChangeKind.ADDED, version=1)

        with pytest.raises(ValidationError):
            event.version = 2
