import hashlib

from conftest import FakeLLM, FakeOcrEngine, MemoryStore, RecordingSink, ScriptedExtractor
from rxnudge.exceptions import GenerationError
from rxnudge.extraction import OcrTextExtractor, PatternExtractor, VisionExtractor
from rxnudge.models import UNREADABLE_SENTINEL, MedicationCandidate

IMAGE = b"prescription photo bytes"

METFORMIN = MedicationCandidate(drug_name="Metformin", dosage="500mg", frequency="Twice daily",
                                dose_timing="1-0-1", instructions="Take with meals")
DIPHENHYDRAMINE = MedicationCandidate(drug_name="Diphenhydramine", dosage="25mg", frequency="At bedtime",
                                      dose_timing="0-0-1")
LISTNOPRIL = MedicationCandidate(drug_name="Listnopril", dosage="10mg", frequency="Once daily", dose_timing="1-0-0")
UNKNOWN = MedicationCandidate(drug_name="Zzqx", dosage="5mg")
UNCLEAR = MedicationCandidate(drug_name=UNREADABLE_SENTINEL, frequency="Twice daily")


def test_result_is_cached_by_image_content(make_pipeline):
    extractor = ScriptedExtractor([METFORMIN])
    pipeline = make_pipeline([extractor])

    first = pipeline.process(IMAGE, active_medications=["Lisinopril"])
    second = pipeline.process(IMAGE, active_medications=["Lisinopril"])

    assert first == second
    assert extractor.calls == 1
    assert first['status'] == 'ok'
    assert first['image_hash'] == hashlib.sha256(IMAGE).hexdigest()
    assert first['medications'][0]['state'] == 'awaiting_confirmation'
    assert first['medications'][0]['patient_facing_card'] is None


def test_callers_cannot_mutate_the_cached_result(make_pipeline):
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])])

    pipeline.process(IMAGE)['medications'].clear()

    assert len(pipeline.process(IMAGE)['medications']) == 1


def test_force_refresh_extracts_again(make_pipeline):
    extractor = ScriptedExtractor([METFORMIN])
    pipeline = make_pipeline([extractor])

    pipeline.process(IMAGE)
    pipeline.process(IMAGE, force_refresh=True)

    assert extractor.calls == 2


def test_invalidate_forces_a_new_extraction(make_pipeline):
    extractor = ScriptedExtractor([METFORMIN])
    pipeline = make_pipeline([extractor])

    image_hash = pipeline.process(IMAGE)['image_hash']
    assert pipeline.invalidate(image_hash) == {'image_hash': image_hash, 'invalidated': True}
    pipeline.process(IMAGE)

    assert extractor.calls == 2


def test_result_reaches_the_durable_tier(make_pipeline):
    durable = MemoryStore()
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])], durable=durable)

    image_hash = pipeline.process(IMAGE)['image_hash']

    entry = durable.entries[image_hash]
    assert entry.raw_extraction['medications'][0]['drug_name'] == 'Metformin'
    assert entry.normalized_result['total_medications'] == 1


def test_failures_are_not_cached(make_pipeline):
    extractor = ScriptedExtractor([UNCLEAR])
    pipeline = make_pipeline([extractor])

    pipeline.process(IMAGE)
    pipeline.process(IMAGE)

    assert extractor.calls == 2


def test_vision_timeout_with_unreadable_name(make_pipeline, png_bytes):
    ocr = FakeOcrEngine("take 1 tab BID")
    pipeline = make_pipeline([
        VisionExtractor(FakeLLM([GenerationError("timed out after 60s")])),
        OcrTextExtractor(ocr, FakeLLM([GenerationError("invalid JSON")])),
        PatternExtractor(ocr),
    ])

    result = pipeline.process(png_bytes, 'image/png')

    assert result['status'] == 'failed'
    assert result['medications'] == []
    failure = result['failedExtractions'][0]
    assert failure['reason'] == 'unclear_name'
    assert failure['state'] == 'rejected'
    assert failure['extractedData']['frequency'] == 'Twice daily'


def test_unreadable_image(make_pipeline, png_bytes):
    pipeline = make_pipeline([OcrTextExtractor(FakeOcrEngine("ab"), FakeLLM())])

    result = pipeline.process(png_bytes, 'image/png')

    assert result['status'] == 'failed'
    assert result['failedExtractions'][0]['reason'] == 'unreadable_image'
    assert result['suggestions']


def test_misspelled_name_is_corrected_for_lookups_only(make_pipeline, terminology):
    pipeline = make_pipeline([ScriptedExtractor([LISTNOPRIL])])

    med = pipeline.process(IMAGE)['medications'][0]

    assert med['extracted_data']['drug_name'] == 'Listnopril'
    assert med['extracted_data']['canonical_name'] == 'Lisinopril'
    assert med['extracted_data']['rxcui'] == '29046'
    assert med['name_validation']['was_corrected']
    assert med['name_validation']['display_name'] == 'Listnopril'
    assert ('find_rxcui', 'Lisinopril') in terminology.calls
    # Dietary findings are keyed by the canonical name
    assert any(i['involved_drug'] == 'Potassium-rich foods' for i in med['interactions'])


def test_unknown_drug_is_reported_with_suggestions(make_pipeline):
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN, UNKNOWN])])

    result = pipeline.process(IMAGE)

    assert result['status'] == 'ok'
    assert result['total_medications'] == 1
    assert result['warnings']
    failure = result['failedExtractions'][0]
    assert failure['reason'] == 'invalid_drug'
    assert failure['originalName'] == 'Zzqx'
    assert failure['suggestions'] == ['Zyrtec', 'Zantac', 'Zocor']


def test_unreachable_terminology_service(make_pipeline, terminology):
    terminology.unavailable = True
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])])

    result = pipeline.process(IMAGE)

    assert result['status'] == 'failed'
    assert result['failedExtractions'][0]['reason'] == 'lookup_unavailable'


def test_elderly_patient_gets_age_warning_on_a_green_card(make_pipeline):
    pipeline = make_pipeline([ScriptedExtractor([DIPHENHYDRAMINE])])

    med = pipeline.process(IMAGE, patient_context={'age': 70})['medications'][0]

    assert med['safety_flag'] == 'GREEN'
    assert med['enhanced_safety']['overallSeverity'] == 'moderate'
    assert med['enhanced_safety']['ageWarnings'][0]['category'] == 'elderly'

    confirmed = pipeline.confirm([med], patient_context={'age': 70})
    card = confirmed['medications'][0]['patient_facing_card']

    assert confirmed['medications'][0]['safety_flag'] == 'GREEN'
    assert "AGE WARNING: Can cause confusion and dizziness in seniors" in card['warning_label']


def test_confirm_recomputes_interactions_across_the_confirmed_list(make_pipeline, interaction_api):
    interaction_api.unavailable = True
    sink = RecordingSink()
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])], sink=sink)

    confirmed = pipeline.confirm([
        {'extracted_data': {'drug_name': 'Warfarin', 'dosage': '5mg', 'frequency': 'Once daily'}},
        {'extracted_data': {'drug_name': 'Aspirin', 'dosage': '81mg', 'frequency': 'Once daily'}},
    ])

    assert [m['safety_flag'] for m in confirmed['medications']] == ['RED', 'RED']
    assert [m['state'] for m in confirmed['medications']] == ['persisted', 'persisted']
    assert len(sink.saved) == 2
    assert confirmed['medications'][0]['patient_facing_card']['warning_label'].startswith(
        "May interact with other medications")


def test_confirm_keeps_the_patients_spelling(make_pipeline):
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])])

    confirmed = pipeline.confirm([{'drug_name': 'Listnopril', 'dosage': '10mg', 'frequency': 'Once daily'}])

    data = confirmed['medications'][0]['extracted_data']
    assert data['drug_name'] == 'Listnopril'
    assert data['canonical_name'] == 'Lisinopril'
    assert confirmed['medications'][0]['state'] == 'nudge_generated'


def test_confirm_can_skip_validation(make_pipeline):
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])])

    confirmed = pipeline.confirm([{
        'extracted_data': {'drug_name': 'Metformin', 'canonical_name': 'Metformin', 'rxcui': '6809'},
        'skipValidation': True,
    }])

    assert confirmed['medications'][0]['name_validation'] == {'skipped': True}


def test_confirm_rejects_entries_it_cannot_verify(make_pipeline):
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])])

    confirmed = pipeline.confirm([{'drug_name': 'Metformin'}, {'drug_name': 'Zzqx'}, {'drug_name': ''}])

    assert confirmed['total_medications'] == 1
    assert sorted(f['reason'] for f in confirmed['failedExtractions']) == ['invalid_drug', 'unclear_name']


def test_confirm_uses_generated_cards_when_available(make_pipeline):
    card = {
        'headline': "Metformin with breakfast and dinner",
        'plain_instruction': "Take one pill with breakfast and one with dinner.",
        'the_why': "",
        'habit_hook': "",
        'warning_label': "",
    }
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])], nudge_llm=FakeLLM([card]))

    confirmed = pipeline.confirm([METFORMIN.to_dict()])

    generated = confirmed['medications'][0]['patient_facing_card']
    assert generated['headline'] == card['headline']
    assert generated['warning_label'] == (
        "May interact with other medications\n"
        "⚠️ FOOD WARNING: Avoid excessive alcohol. Increases risk of low blood sugar and lactic acidosis.")


def test_standalone_operations(make_pipeline):
    pipeline = make_pipeline([ScriptedExtractor([METFORMIN])])

    checked = pipeline.check_interactions("Warfarin", ["Aspirin"])
    assert checked['safetyFlag']['flag'] == 'YELLOW'
    assert checked['interactions'][0]['source'] == 'dietary'

    assert pipeline.lookup_drug("Metformin")['found']
    assert not pipeline.lookup_drug("Zzqx")['found']

    translated = pipeline.translate("Take one pill.", "English")
    assert translated == {'original': "Take one pill.", 'translated': "Take one pill.", 'targetLanguage': "English"}
