import itertools

import pytest

from conftest import FakeInteractionAPI
from rxnudge.interactions import (
    FALLBACK_RECOMMENDATION, LIST_RECOMMENDATION, InteractionChecker, classify_severity,
    determine_safety_flag, dietary_interactions, table_tier, tier_for,
)
from rxnudge.models import InteractionFinding, SafetyFlag

FLAG_ORDER = {SafetyFlag.GREEN: 0, SafetyFlag.YELLOW: 1, SafetyFlag.RED: 2}

WARFARIN_ASPIRIN = {'drugs': 'warfarin + aspirin', 'description': 'Increased risk of bleeding.', 'severity': 'high'}


def finding(tier, drug="X"):
    return InteractionFinding(tier=tier, involved_drug=drug, description=f"tier {tier} finding")


@pytest.mark.parametrize("text,expected", [
    ("Increased risk of bleeding.", "high"),
    ("Monitor blood levels", "medium"),
    ("A minor, rare and unlikely effect", "low"),
    ("", "medium"),
])
def test_classify_severity(text, expected):
    assert classify_severity(text) == expected


def test_tier_for():
    assert tier_for("high") == 1
    assert tier_for("Moderate") == 2
    assert tier_for("minor") == 3
    assert tier_for("N/A", "May cause a life-threatening drop in blood pressure") == 1
    assert tier_for(None, "A minor, rare and unlikely effect") == 3


def test_unreported_severity_is_minor_whatever_the_wording():
    assert tier_for("N/A", "The risk or severity of bleeding can be increased when Warfarin is combined with X.") == 3
    assert tier_for("", "Serious reaction possible") == 3


def test_table_rows_without_severity_use_keyword_rules():
    assert table_tier("N/A", "Increased risk of bleeding.") == 1
    assert table_tier("", "Monitor blood levels") == 2
    assert table_tier("medium", "Increased risk of bleeding.") == 2


def test_single_drug_with_unrated_service_pair_stays_green(terminology):
    pair = {'drugs': 'diphenhydramine + alcohol', 'severity': 'N/A',
            'description': 'The risk or severity of adverse effects can be increased when '
                           'Diphenhydramine is combined with Alcohol.'}
    api = FakeInteractionAPI(by_rxcui={'3498': [pair]})
    findings = InteractionChecker(terminology, api).check_interactions("Diphenhydramine")

    assert [f.tier for f in findings] == [3]
    assert determine_safety_flag(findings).flag == SafetyFlag.GREEN


def test_safety_flag_levels():
    assert determine_safety_flag([]).flag == SafetyFlag.GREEN
    assert determine_safety_flag([finding(3)]).flag == SafetyFlag.GREEN
    assert determine_safety_flag([finding(3), finding(2)]).flag == SafetyFlag.YELLOW
    assert determine_safety_flag([finding(2), finding(1)]).flag == SafetyFlag.RED


def test_safety_flag_accepts_dicts():
    verdict = determine_safety_flag([{'tier': 1}, {'tier': 3}])

    assert verdict.flag == SafetyFlag.RED
    assert "Immediate physician consultation" in verdict.reasoning


def test_adding_a_finding_never_lowers_the_flag():
    tiers = [1, 2, 3]
    for size in range(4):
        for combo in itertools.product(tiers, repeat=size):
            base = determine_safety_flag([finding(t) for t in combo]).flag
            for extra in tiers:
                grown = determine_safety_flag([finding(t) for t in combo] + [finding(extra)]).flag
                assert FLAG_ORDER[grown] >= FLAG_ORDER[base]


def test_dietary_interactions():
    findings = dietary_interactions("Amlodipine")

    assert len(findings) == 1
    assert findings[0].involved_drug == "Grapefruit"
    assert findings[0].tier == 3
    assert findings[0].source == "dietary"
    assert dietary_interactions("Gabapentin") == []


def test_service_findings_plus_dietary(terminology):
    api = FakeInteractionAPI(by_rxcui={'11289': [WARFARIN_ASPIRIN]})
    findings = InteractionChecker(terminology, api).check_interactions("Warfarin")

    assert [f.source for f in findings] == ['rxnav', 'dietary']
    assert findings[0].tier == 1
    assert findings[0].involved_drug == 'warfarin + aspirin'
    assert determine_safety_flag(findings).flag == SafetyFlag.RED


def test_list_interactions_against_active_medications(terminology):
    api = FakeInteractionAPI(among=[{'drugs': 'metformin + lisinopril', 'description': 'May lower blood sugar.',
                                     'severity': 'N/A'}])
    findings = InteractionChecker(terminology, api).check_interactions("Metformin", ["Lisinopril"])

    listed = [f for f in findings if f.source == 'rxnav_list']
    assert len(listed) == 1
    assert listed[0].tier == 2
    assert listed[0].recommendation == LIST_RECOMMENDATION


def test_service_down_falls_back_to_static_table(terminology):
    api = FakeInteractionAPI(unavailable=True)
    findings = InteractionChecker(terminology, api).check_interactions("Warfarin", ["Aspirin"])

    table = [f for f in findings if f.source == 'fallback_table']
    assert len(table) == 1
    assert table[0].tier == 1
    assert table[0].involved_drug == "Aspirin"
    assert table[0].recommendation == FALLBACK_RECOMMENDATION
    assert any(f.source == 'dietary' for f in findings)


def test_unknown_drug_uses_static_table(terminology, interaction_api):
    findings = InteractionChecker(terminology, interaction_api).check_interactions("Digoxin", ["Furosemide"])

    assert [f.source for f in findings] == ['fallback_table']
    assert interaction_api.calls == 0


def test_static_table_matches_either_order(checker):
    assert checker.find_interaction_by_name("Aspirin", "warfarin")['severity'] == 'high'
    assert checker.find_interaction_by_name("Tab. Warfarin", "Aspirin") is not None
    assert checker.find_interaction_by_name("Aspirin", "Metformin") is None


def test_drug_is_not_checked_against_itself(terminology):
    api = FakeInteractionAPI(unavailable=True)
    findings = InteractionChecker(terminology, api).check_interactions("Warfarin", ["warfarin"])

    assert all(f.source == 'dietary' for f in findings)


def test_missing_table_leaves_only_dietary_fallback(terminology, tmp_path):
    checker = InteractionChecker(terminology, FakeInteractionAPI(unavailable=True), tmp_path / "missing.csv")

    assert checker.interactions_df.empty
    assert checker.find_interaction_by_name("Warfarin", "Aspirin") is None
