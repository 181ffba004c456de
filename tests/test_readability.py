from rxnudge import readability


def test_short_plain_sentence_passes():
    result = readability.validate("Take one pill each morning with water.")

    assert result.is_plain
    assert result.grade_level <= readability.TARGET_GRADE
    assert result.jargon == []
    assert result.suggestions == []


def test_jargon_fails_even_at_low_grade():
    result = readability.validate("Watch for hypertension.")

    assert not result.is_plain
    assert result.jargon == ['hypertension']
    assert any('jargon' in s for s in result.suggestions)


def test_long_words_raise_grade():
    text = ("Unquestionably, extraordinarily complicated organizational responsibilities "
            "necessitate comprehensive consideration.")
    result = readability.validate(text)

    assert not result.is_plain
    assert result.grade_level > readability.TARGET_GRADE


def test_jargon_matches_inflected_forms():
    assert readability.detect_jargon("Side reactions are rare") == ['reaction']
    assert readability.detect_jargon("It is metabolized by the liver") == ['metabolize']


def test_simplify_replaces_jargon_and_prefers_longest_phrase():
    assert readability.simplify("Watch for hypertension.") == "Watch for high blood pressure."
    assert readability.simplify("Report any adverse reaction.") == "Report any bad side effect."


def test_simplify_cannot_fix_long_sentences():
    text = ("Unquestionably, extraordinarily complicated organizational responsibilities "
            "necessitate comprehensive consideration.")

    assert readability.simplify(text) == text


def test_empty_text():
    assert readability.validate("").is_plain
    assert readability.simplify("") == ""
    assert readability.count_syllables("the") == 1
