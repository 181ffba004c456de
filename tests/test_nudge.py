import pytest

from conftest import FakeLLM
from rxnudge.exceptions import GenerationError
from rxnudge.models import InteractionFinding, MedicationCandidate, PatientContext
from rxnudge.nudge import EXAMPLE_CARD, INTERACTION_WARNING, NudgeGenerator, template_headline

METFORMIN = MedicationCandidate(drug_name="Metformin", dosage="500mg", frequency="Twice daily",
                                dose_timing="1-0-1", instructions="Take with meals")

PLAIN_CARD = {
    'headline': "Metformin with breakfast and dinner",
    'plain_instruction': "Take one pill with breakfast and one with dinner.",
    'the_why': "It helps keep your blood sugar steady.",
    'habit_hook': "Keep the box next to your plates.",
    'warning_label': "",
}

HARD_CARD = dict(PLAIN_CARD, plain_instruction=(
    "Unquestionably, extraordinarily complicated organizational responsibilities "
    "necessitate comprehensive consideration."))


def test_plain_card_is_used_as_written():
    card = NudgeGenerator(FakeLLM([PLAIN_CARD])).generate(METFORMIN, PatientContext(age=50))

    assert card.to_dict() == PLAIN_CARD


def test_prompt_only_carries_verified_fields():
    llm = FakeLLM([PLAIN_CARD])
    NudgeGenerator(llm).generate(METFORMIN, PatientContext(name="Sam", lifestyle="breakfast at 8am"))

    prompt = llm.prompts[0]
    assert "- Drug: Metformin" in prompt
    assert "- Frequency: Twice daily" in prompt
    assert "- Duration: not specified" in prompt
    assert "breakfast at 8am" in prompt


def test_echoed_example_text_is_blanked():
    card = NudgeGenerator(FakeLLM([dict(EXAMPLE_CARD)])).generate(METFORMIN)

    assert card.headline == "Taking Metformin 500mg as Twice daily"
    assert card.plain_instruction == ""
    assert card.the_why == ""
    assert card.warning_label == ""


def test_jargon_is_simplified():
    llm = FakeLLM([dict(PLAIN_CARD, the_why="It helps with hypertension.")])
    card = NudgeGenerator(llm).generate(METFORMIN)

    assert card.the_why == "It helps with high blood pressure."


def test_card_that_stays_hard_to_read_falls_back_to_minimal():
    card = NudgeGenerator(FakeLLM([HARD_CARD])).generate(METFORMIN)

    assert card.headline == "Take with meals"
    assert card.plain_instruction == "Take with meals"
    assert card.the_why == ""


@pytest.mark.parametrize("payload", [
    {k: v for k, v in PLAIN_CARD.items() if k != 'headline'},
    dict(PLAIN_CARD, the_why=5),
    dict(PLAIN_CARD, habit_hook=None),
])
def test_schema_violations_fall_back_to_minimal(payload):
    card = NudgeGenerator(FakeLLM([payload])).generate(METFORMIN)

    assert card.plain_instruction == "Take with meals"
    assert card.habit_hook == ""


def test_backend_failure_falls_back_to_minimal():
    findings = [InteractionFinding(tier=2, involved_drug="Lisinopril", description="May lower blood sugar.")]
    card = NudgeGenerator(FakeLLM([GenerationError("timed out")])).generate(METFORMIN, findings=findings)

    assert card.plain_instruction == "Take with meals"
    assert card.warning_label == INTERACTION_WARNING


def test_no_backend_gives_minimal_card_with_safety_text():
    card = NudgeGenerator(None).generate(METFORMIN, safety_text="⚠️ FOOD WARNING: Avoid excessive alcohol.")

    assert card.warning_label == "⚠️ FOOD WARNING: Avoid excessive alcohol."


def test_safety_text_is_appended_to_generated_warning():
    llm = FakeLLM([dict(PLAIN_CARD, warning_label="Do not skip meals.")])
    card = NudgeGenerator(llm).generate(METFORMIN, safety_text="⚠️ FOOD WARNING: Avoid excessive alcohol.")

    assert card.warning_label == "Do not skip meals.\n⚠️ FOOD WARNING: Avoid excessive alcohol."


def test_generated_warning_is_simplified_even_when_card_is_plain():
    llm = FakeLLM([dict(PLAIN_CARD, warning_label="Contraindicated in renal impairment.")])
    card = NudgeGenerator(llm).generate(METFORMIN, safety_text="⚠️ FOOD WARNING: Avoid excessive alcohol.")

    assert card.plain_instruction == PLAIN_CARD['plain_instruction']
    assert card.warning_label == ("should not be used in kidney impairment.\n"
                                  "⚠️ FOOD WARNING: Avoid excessive alcohol.")


def test_unreadable_candidate_is_refused():
    with pytest.raises(ValueError):
        NudgeGenerator(FakeLLM()).generate(MedicationCandidate(drug_name="CLARIFICATION_NEEDED"))


def test_template_headline():
    assert template_headline(MedicationCandidate(drug_name="Aspirin")) == "Taking Aspirin"
    assert template_headline(MedicationCandidate()) == "Follow this prescription as your doctor directed"


def test_translate():
    generator = NudgeGenerator(FakeLLM(["Toma una pastilla con el desayuno."]))

    assert generator.translate("Take one pill with breakfast.", "Spanish") == "Toma una pastilla con el desayuno."
    assert generator.translate("Take one pill.", "English") == "Take one pill."


def test_translate_failure_returns_tagged_original():
    generator = NudgeGenerator(FakeLLM([GenerationError("quota exceeded")]))

    assert generator.translate("Take one pill.", "Hindi") == "[Translation unavailable] Take one pill."
    assert NudgeGenerator(None).translate("Take one pill.", "Hindi") == "[Translation unavailable] Take one pill."
