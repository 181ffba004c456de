import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd

from .exceptions import ServiceUnavailableError
from .models import InteractionFinding, SafetyFlag, SafetyVerdict
from .utils import normalize_drug_name

# Set up logging
logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_PATH = Path(__file__).parent / "data" / "fallback_interactions.csv"

TIER_RECOMMENDATIONS = {
    1: "STOP. Contact your physician immediately before taking this medication.",
    2: "Schedule a follow-up with your doctor within 7 days. Monitor for side effects.",
    3: "Be aware of this interaction. Adjust diet as recommended.",
}

LIST_RECOMMENDATION = "Consult your physician about this combination."
FALLBACK_RECOMMENDATION = "Contact your physician immediately before taking both medications."

# Food and drink interactions, keyed by generic name
DIETARY_INTERACTIONS = {
    'amlodipine': [(3, 'Grapefruit', 'Grapefruit may increase blood levels of amlodipine, increasing the risk of side effects.',
                    'Avoid grapefruit juice while on this medication.')],
    'atorvastatin': [(3, 'Grapefruit', 'Grapefruit can increase statin levels in the blood.',
                      'Limit grapefruit consumption to small amounts.')],
    'warfarin': [(2, 'Vitamin K foods', 'Foods high in Vitamin K (spinach, kale) can reduce warfarin effectiveness.',
                  'Keep vitamin K intake consistent day to day.')],
    'metformin': [(3, 'Alcohol', 'Alcohol increases the risk of lactic acidosis with metformin.',
                   'Limit alcohol consumption.')],
    'lisinopril': [(3, 'Potassium-rich foods', 'Lisinopril can increase potassium. Avoid excess bananas, oranges, salt substitutes.',
                    'Do not take potassium supplements without doctor advice.')],
    'ciprofloxacin': [(3, 'Dairy products', 'Calcium in dairy can reduce ciprofloxacin absorption.',
                       'Take 2 hours before or 6 hours after dairy products.')],
}

HIGH_SEVERITY_KEYWORDS = [
    'contraindicated', 'dangerous', 'fatal', 'death', 'life-threatening',
    'severe', 'serious', 'emergency', 'hospitalization', 'toxic',
    'poisoning', 'overdose', 'respiratory depression', 'cardiac arrest',
    'serotonin syndrome', 'bleeding', 'hemorrhage', 'stroke', 'seizure'
]

MEDIUM_SEVERITY_KEYWORDS = [
    'monitor', 'caution', 'adjust', 'reduce', 'increase', 'modify',
    'careful', 'watch', 'observe', 'check', 'avoid', 'consider',
    'may increase', 'may decrease', 'potential', 'risk', 'interaction'
]

LOW_SEVERITY_KEYWORDS = [
    'minor', 'minimal', 'slight', 'theoretical', 'unlikely',
    'possible', 'rare', 'uncommon', 'mild', 'moderate interaction'
]

CRITICAL_PATTERNS = [
    r'\b(?:do not|never|avoid)\b.*\b(?:combine|use together|concurrent)\b',
    r'\bcontraindicated\b',
    r'\b(?:severe|serious|life-threatening)\b.*\b(?:reaction|effect|outcome)\b',
    r'\b(?:death|fatal|mortality)\b',
    r'\bemergency\b.*\brequired\b'
]

WARNING_PATTERNS = [
    r'\bmonitor\b.*\b(?:closely|carefully|frequently)\b',
    r'\b(?:adjust|reduce|modify)\b.*\bdose\b',
    r'\bmay (?:increase|decrease|affect)\b',
    r'\bcaution\b.*\brequired\b'
]

SEVERITY_TIERS = {'high': 1, 'medium': 2, 'moderate': 2, 'low': 3, 'minor': 3}


def classify_severity(text: str) -> str:
    """
    Rule-based severity of an interaction description: "high", "medium" or "low"
    """
    if not text:
        return "medium"

    text_lower = text.lower()

    high_count = sum(1 for keyword in HIGH_SEVERITY_KEYWORDS if keyword in text_lower)
    medium_count = sum(1 for keyword in MEDIUM_SEVERITY_KEYWORDS if keyword in text_lower)
    low_count = sum(1 for keyword in LOW_SEVERITY_KEYWORDS if keyword in text_lower)

    for pattern in CRITICAL_PATTERNS:
        if re.search(pattern, text_lower):
            high_count += 2

    for pattern in WARNING_PATTERNS:
        if re.search(pattern, text_lower):
            medium_count += 1

    if high_count >= 1:
        return "high"
    if low_count >= 2:
        return "low"
    return "medium"


def tier_for(severity: Optional[str], description: str = "") -> int:
    """
    Map a reported severity to a tier. Unreported severities ("N/A", empty) are
    tier 3 unless the description calls the interaction life-threatening.
    """
    severity = (severity or "").strip().lower()
    if 'life-threatening' in (description or "").lower():
        return 1
    return SEVERITY_TIERS.get(severity, 3)


def table_tier(severity: Optional[str], description: str = "") -> int:
    """
    Tier of a fallback-table row; rows without a recognised severity are graded
    by the keyword rules
    """
    if (severity or "").strip().lower() in SEVERITY_TIERS or 'life-threatening' in (description or "").lower():
        return tier_for(severity, description)
    return SEVERITY_TIERS[classify_severity(description)]


def recommendation_for(tier: int) -> str:
    return TIER_RECOMMENDATIONS.get(tier, TIER_RECOMMENDATIONS[3])


def dietary_interactions(drug_name: str) -> List[InteractionFinding]:
    key = normalize_drug_name(drug_name)
    return [
        InteractionFinding(
            tier=tier,
            involved_drug=food,
            description=description,
            severity='N/A',
            recommendation=recommendation,
            source='dietary',
        )
        for tier, food, description, recommendation in DIETARY_INTERACTIONS.get(key, [])
    ]


def determine_safety_flag(findings: Iterable[Union[InteractionFinding, Dict]]) -> SafetyVerdict:
    """
    Reduce findings to one flag: any tier 1 → RED, else any tier 2 → YELLOW, else GREEN
    """
    tiers = [f.tier if isinstance(f, InteractionFinding) else int(f.get('tier', 3)) for f in findings or []]

    if not tiers:
        return SafetyVerdict(SafetyFlag.GREEN,
                             "No drug interactions detected. Safe to proceed with prescribed dosage.")
    if 1 in tiers:
        return SafetyVerdict(SafetyFlag.RED,
                             "Critical drug interaction detected. Immediate physician consultation "
                             "required before starting this medication.")
    if 2 in tiers:
        return SafetyVerdict(SafetyFlag.YELLOW,
                             "Moderate interactions found. Monitor closely and follow up with your "
                             "doctor within 7 days.")
    return SafetyVerdict(SafetyFlag.GREEN,
                         "Only minor dietary interactions found. Safe to proceed with normal precautions.")


class InteractionChecker:
    """
    Aggregates interaction findings from the interaction service, the static
    fallback table and the dietary table.
    """

    def __init__(self, terminology, interaction_api, fallback_path: Union[str, Path, None] = None):
        self.terminology = terminology
        self.interaction_api = interaction_api
        self.fallback_path = Path(fallback_path) if fallback_path else DEFAULT_FALLBACK_PATH
        self.interactions_df = None
        self.load_fallback_table()

    def load_fallback_table(self):
        """Load the table of well-known dangerous combinations"""
        try:
            self.interactions_df = pd.read_csv(self.fallback_path)
            self.interactions_df['drug_a_name'] = self.interactions_df['drug_a_name'].str.lower().str.strip()
            self.interactions_df['drug_b_name'] = self.interactions_df['drug_b_name'].str.lower().str.strip()
            logger.info(f"✅ Loaded {len(self.interactions_df)} fallback interactions")
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Error loading fallback interactions from {self.fallback_path}: {e}")
            self.interactions_df = pd.DataFrame(
                columns=['drug_a_name', 'drug_b_name', 'interaction_text', 'severity', 'sources'])

    def find_interaction_by_name(self, drug_a: str, drug_b: str) -> Optional[Dict]:
        """
        Find a fallback-table interaction between two drug names, in either order
        """
        if self.interactions_df is None or self.interactions_df.empty:
            return None

        drug_a_lower = normalize_drug_name(drug_a)
        drug_b_lower = normalize_drug_name(drug_b)
        if not drug_a_lower or not drug_b_lower:
            return None

        df = self.interactions_df
        interaction = df[
            ((df['drug_a_name'] == drug_a_lower) & (df['drug_b_name'] == drug_b_lower)) |
            ((df['drug_a_name'] == drug_b_lower) & (df['drug_b_name'] == drug_a_lower))
        ]

        if not interaction.empty:
            return interaction.iloc[0].to_dict()
        return None

    def fallback_interactions(self, drug_name: str, other_active: List[str]) -> List[InteractionFinding]:
        """
        Static-table findings against the other active drugs, plus dietary findings
        """
        findings = []
        for other in other_active or []:
            row = self.find_interaction_by_name(drug_name, other)
            if not row:
                continue
            severity = row.get('severity')
            severity = severity.strip() if isinstance(severity, str) and severity.strip() else 'N/A'
            tier = table_tier(severity, row.get('interaction_text', ''))
            findings.append(InteractionFinding(
                tier=tier,
                involved_drug=other,
                description=row.get('interaction_text') or
                f"Known interaction between {drug_name} and {other}. This combination may be dangerous.",
                severity=severity,
                recommendation=FALLBACK_RECOMMENDATION if tier == 1 else recommendation_for(tier),
                source='fallback_table',
            ))

        findings.extend(dietary_interactions(drug_name))
        return findings

    def _service_interactions(self, drug_name: str, rxcui: str, other_active: List[str]) -> List[InteractionFinding]:
        findings = []

        for pair in self.interaction_api.interactions_for(rxcui):
            tier = tier_for(pair.get('severity'), pair.get('description', ''))
            findings.append(InteractionFinding(
                tier=tier,
                involved_drug=pair.get('drugs') or drug_name,
                description=pair.get('description') or 'Interaction detected',
                severity=pair.get('severity') or 'N/A',
                recommendation=recommendation_for(tier),
                source='rxnav',
            ))

        if other_active:
            rxcuis = [rxcui]
            for med in other_active:
                med_rxcui = self.terminology.find_rxcui(med)
                if med_rxcui and med_rxcui not in rxcuis:
                    rxcuis.append(med_rxcui)

            for pair in self.interaction_api.interactions_among(rxcuis):
                findings.append(InteractionFinding(
                    tier=2,
                    involved_drug=pair.get('drugs') or 'Unknown',
                    description=pair.get('description') or 'Interaction with current medication',
                    severity=pair.get('severity') or 'N/A',
                    recommendation=LIST_RECOMMENDATION,
                    source='rxnav_list',
                ))

        return findings

    def check_interactions(self, canonical_name: str, other_active: Optional[List[str]] = None) -> List[InteractionFinding]:
        """
        All interaction findings for one drug against the patient's other active drugs.

        Never raises on service trouble: an unreachable service or a name it does
        not know degrades to the static fallback table.
        """
        other_active = [m for m in (other_active or [])
                        if m and normalize_drug_name(m) != normalize_drug_name(canonical_name)]

        try:
            rxcui = self.terminology.find_rxcui(canonical_name)
            if not rxcui:
                logger.info(f"No RxCUI found for {canonical_name}, using fallback table")
                return self.fallback_interactions(canonical_name, other_active)

            findings = self._service_interactions(canonical_name, rxcui, other_active)
        except ServiceUnavailableError as e:
            logger.warning(f"⚠️ Interaction service unavailable for {canonical_name}, using fallback table: {e}")
            return self.fallback_interactions(canonical_name, other_active)

        findings.extend(dietary_interactions(canonical_name))
        return self._dedupe(findings)

    @staticmethod
    def _dedupe(findings: List[InteractionFinding]) -> List[InteractionFinding]:
        seen = set()
        unique = []
        for finding in findings:
            key = (finding.involved_drug.lower(), finding.description.strip().lower())
            if key in seen:
                continue
            seen.add(key)
            unique.append(finding)
        return unique
