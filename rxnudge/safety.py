"""
Static safety rules reported separately from drug interactions: food and
drink, age group and dosage. Each category needs its own advice text, so the
findings are kept apart in a SafetyReport instead of joining the
interaction list.
"""

import logging
from typing import Any, Dict, List, Optional

from .models import SafetyReport
from .utils import normalize_drug_name, parse_dose_mg, times_per_day

# Set up logging
logger = logging.getLogger(__name__)

ELDERLY_AGE = 65
PEDIATRIC_AGE = 18

FOOD_INTERACTIONS = {
    # Cardiovascular
    'warfarin': {'avoid': ['vitamin K-rich foods (spinach, kale)', 'alcohol', 'cranberry juice'],
                 'reason': 'Can interfere with blood thinning'},
    'lisinopril': {'avoid': ['potassium supplements', 'bananas', 'salt substitutes'],
                   'reason': 'Can cause high potassium levels'},
    'amlodipine': {'avoid': ['grapefruit juice'], 'reason': 'Increases drug levels and side effects'},
    'atorvastatin': {'avoid': ['grapefruit juice', 'large amounts of alcohol'],
                     'reason': 'Can increase side effects and liver damage'},
    'simvastatin': {'avoid': ['grapefruit juice'], 'reason': 'Increases drug levels and muscle problems'},

    # Antibiotics
    'ciprofloxacin': {'avoid': ['dairy products', 'calcium supplements'], 'reason': 'Reduces medication absorption',
                      'timing': 'Take 2 hours before or after dairy'},
    'azithromycin': {'avoid': ['aluminum/magnesium antacids'], 'reason': 'Reduces absorption'},
    'metronidazole': {'avoid': ['alcohol'], 'reason': 'Causes severe nausea and vomiting'},

    # Diabetes
    'metformin': {'avoid': ['excessive alcohol'], 'reason': 'Increases risk of low blood sugar and lactic acidosis'},

    # Pain
    'ibuprofen': {'avoid': ['alcohol'], 'reason': 'Increases stomach bleeding risk'},
    'aspirin': {'avoid': ['alcohol', 'other NSAIDs'], 'reason': 'Increases bleeding risk'},

    # Thyroid
    'levothyroxine': {'avoid': ['coffee', 'soy', 'calcium', 'iron'], 'reason': 'Reduces absorption',
                      'timing': 'Take on empty stomach, 30 min before eating'},
}

# Drug classes named in the age rules, with the generics they cover
DRUG_CLASSES = {
    'benzodiazepines': ['diazepam', 'lorazepam', 'alprazolam', 'clonazepam', 'temazepam'],
    'nsaids': ['ibuprofen', 'naproxen', 'diclofenac', 'ketorolac', 'indomethacin', 'meloxicam'],
    'anticholinergics': ['oxybutynin', 'hydroxyzine', 'amitriptyline', 'scopolamine', 'benztropine'],
    'fluoroquinolones': ['ciprofloxacin', 'levofloxacin', 'moxifloxacin', 'ofloxacin'],
    'tetracycline': ['tetracycline', 'doxycycline', 'minocycline'],
}

AGE_WARNINGS = {
    'elderly': {
        'benzodiazepines': {'warning': 'Increased fall risk and confusion in elderly',
                            'alternatives': 'Discuss non-drug options with doctor'},
        'diphenhydramine': {'warning': 'Can cause confusion and dizziness in seniors',
                            'alternatives': 'Consider non-drowsy alternatives'},
        'aspirin': {'warning': 'Higher bleeding risk in elderly', 'note': 'Monitor for bruising or bleeding'},
        'nsaids': {'warning': 'Increased stomach and kidney problems', 'note': 'Use lowest effective dose'},
        'anticholinergics': {'warning': 'Can cause memory problems and confusion',
                             'note': 'Regular monitoring recommended'},
    },
    'pediatric': {
        'aspirin': {'warning': 'Risk of Reye syndrome in children',
                    'alternatives': 'Use acetaminophen or ibuprofen instead'},
        'tetracycline': {'warning': 'Can cause permanent tooth discoloration', 'note': 'Avoid in children under 8'},
        'fluoroquinolones': {'warning': 'May affect bone and cartilage development',
                             'note': 'Use only when no alternatives'},
    },
}

AGE_SEVERITY = {'elderly': 'moderate', 'pediatric': 'high'}

DOSAGE_ALERTS = {
    'aspirin': [
        {'min_dose': 325, 'alert': 'High dose aspirin increases bleeding risk', 'note': 'Monitor for bruising, black stools'},
    ],
    'acetaminophen': [
        {'max_daily': 4000, 'alert': 'DO NOT exceed 4000mg per day', 'note': 'Can cause liver damage'},
    ],
    'paracetamol': [
        {'max_daily': 4000, 'alert': 'DO NOT exceed 4000mg per day', 'note': 'Can cause liver damage'},
    ],
    'ibuprofen': [
        {'max_daily': 2400, 'alert': 'DO NOT exceed 2400mg per day', 'note': 'Higher doses increase stomach and heart risks'},
    ],
}


def _matches(drug_name: str, rule_key: str) -> bool:
    """Rule keys match by substring ("aspirin 81" → aspirin) or by drug class membership."""
    if rule_key in drug_name:
        return True
    return any(member in drug_name for member in DRUG_CLASSES.get(rule_key, []))


def check_food_interactions(drug_name: str) -> Dict[str, Any]:
    name = normalize_drug_name(drug_name)
    if not name:
        return {'hasFoodInteraction': False}

    if name in FOOD_INTERACTIONS:
        return {'hasFoodInteraction': True, **FOOD_INTERACTIONS[name]}

    for key, value in FOOD_INTERACTIONS.items():
        if key in name:
            return {'hasFoodInteraction': True, **value}

    return {'hasFoodInteraction': False}


def check_age_warnings(drug_name: str, patient_age: Optional[int]) -> List[Dict[str, Any]]:
    """
    Elderly (65+) and pediatric (under 18) warnings for a drug
    """
    name = normalize_drug_name(drug_name)
    if not name or patient_age is None:
        return []

    categories = []
    if patient_age >= ELDERLY_AGE:
        categories.append('elderly')
    if patient_age < PEDIATRIC_AGE:
        categories.append('pediatric')

    warnings = []
    for category in categories:
        for rule_key, rule in AGE_WARNINGS[category].items():
            if _matches(name, rule_key):
                warnings.append({'category': category, 'severity': AGE_SEVERITY[category], **rule})

    return warnings


def check_dosage_alerts(drug_name: str, dosage: str, frequency: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Dose threshold alerts. With a frequency the daily total is per-dose strength
    times doses per day; without one the per-dose strength is checked.
    """
    name = normalize_drug_name(drug_name)
    dose_mg = parse_dose_mg(dosage)
    if not name or dose_mg is None:
        return []

    per_day = times_per_day(frequency) if frequency else None
    daily_mg = dose_mg * per_day if per_day else dose_mg

    alerts = []
    for rule_key, rules in DOSAGE_ALERTS.items():
        if rule_key not in name:
            continue
        for rule in rules:
            if rule.get('min_dose') is not None and dose_mg >= rule['min_dose']:
                alerts.append({'severity': 'high', 'alert': rule['alert'], 'note': rule['note']})
            if rule.get('max_daily') is not None and daily_mg > rule['max_daily']:
                alerts.append({
                    'severity': 'critical',
                    'alert': rule['alert'],
                    'note': rule['note'],
                    'daily_total_mg': daily_mg,
                })
        break

    return alerts


def check_duplicate_therapy(drug_name: str, other_drugs: Optional[List[str]]) -> List[Dict[str, Any]]:
    """Same drug already on the active list doubles the real daily dose."""
    name = normalize_drug_name(drug_name)
    if not name:
        return []
    for other in other_drugs or []:
        if normalize_drug_name(other) == name:
            return [{
                'severity': 'high',
                'alert': f'{drug_name} is already on your medication list',
                'note': 'Taking both can double your dose. Ask your doctor before taking it twice.',
            }]
    return []


def enhanced_safety_check(drug_name: str, dosage: str, patient_age: Optional[int],
                          other_drugs: Optional[List[str]] = None,
                          frequency: Optional[str] = None) -> SafetyReport:
    """
    Food, age and dosage findings for one drug, with an overall severity:
    high if any pediatric warning or high/critical dosage alert, moderate if
    any food or age finding, otherwise low.
    """
    report = SafetyReport(
        drug_name=drug_name,
        food_interactions=check_food_interactions(drug_name),
        age_warnings=check_age_warnings(drug_name, patient_age),
        dosage_alerts=(check_dosage_alerts(drug_name, dosage, frequency) if dosage else [])
        + check_duplicate_therapy(drug_name, other_drugs),
    )

    has_high = (any(w['severity'] == 'high' for w in report.age_warnings) or
                any(a['severity'] in ('high', 'critical') for a in report.dosage_alerts))

    if has_high:
        report.overall_severity = 'high'
    elif report.food_interactions.get('hasFoodInteraction') or report.age_warnings:
        report.overall_severity = 'moderate'

    if report.overall_severity != 'low':
        logger.info(f"⚠️ Safety check for {drug_name}: {report.overall_severity} severity")
    return report


def safety_warning_text(report: SafetyReport) -> str:
    """
    Render a safety report as patient-facing warning lines
    """
    warnings = []

    food = report.food_interactions
    if food.get('hasFoodInteraction') and food.get('avoid'):
        reason = food.get('reason')
        line = f"⚠️ FOOD WARNING: Avoid {', '.join(food['avoid'])}."
        warnings.append(f"{line} {reason}." if reason else line)
        if food.get('timing'):
            warnings.append(f"⏰ TIMING: {food['timing']}")

    for warning in report.age_warnings:
        warnings.append(f"👵 AGE WARNING: {warning['warning']}")
        if warning.get('note'):
            warnings.append(f"   Note: {warning['note']}")
        if warning.get('alternatives'):
            warnings.append(f"   {warning['alternatives']}")

    for alert in report.dosage_alerts:
        warnings.append(f"💊 DOSAGE ALERT: {alert['alert']}")
        if alert.get('note'):
            warnings.append(f"   {alert['note']}")

    return "\n".join(warnings)
