"""Tests for text helpers."""


def test_detect_language_defaults_to_english_without_markers():
    from quantumwatch.textutils import detect_language

    assert detect_language("") == "en"
    assert detect_language(None) == "en"
    assert detect_language("Qubits! Photons? 42") == "en"


def test_detect_language_french_wins_on_higher_count():
    from quantumwatch.textutils import detect_language

    # le, les, dans (3 French) vs the, and (2 English)
    assert detect_language("le qubit, les photons dans the lab and more") == "fr"


def test_detect_language_tie_is_english():
    from quantumwatch.textutils import detect_language

    assert detect_language("le qubit and the photon et") == "en"


def test_detect_language_matches_whole_words_only():
    from quantumwatch.textutils import detect_language

    # "lesson", "delay", "theory" contain marker words but aren't markers
    assert detect_language("lesson delay theory") == "en"
    assert detect_language("Une équipe étudie la intrication") == "fr"


def test_sanitize_filename():
    from quantumwatch.textutils import sanitize_filename

    assert sanitize_filename("Hello, World! --Test__2024") == "hello-world-test-2024"
    assert sanitize_filename("  IBM's Quantum   Roadmap  ") == "ibms-quantum-roadmap"
    assert sanitize_filename("!!!") == ""


def test_sanitize_filename_drops_non_ascii_letters():
    from quantumwatch.textutils import sanitize_filename

    assert sanitize_filename("Café quantique") == "caf-quantique"


def test_estimate_duration_rounds_up():
    from quantumwatch.textutils import estimate_duration

    assert estimate_duration("x" * 150) == 10
    assert estimate_duration("x" * 151) == 11
    assert estimate_duration("") == 0


def test_truncate_long_text_fits_limit_with_marker():
    from quantumwatch.textutils import TRUNCATION_MARKER, truncate

    result = truncate("a" * 5000, 4000)

    assert len(result) == 4000
    assert result.endswith(TRUNCATION_MARKER)


def test_truncate_short_text_unchanged():
    from quantumwatch.textutils import truncate

    text = "b" * 100
    assert truncate(text, 4000) == text
    assert truncate("c" * 4000, 4000) == "c" * 4000
