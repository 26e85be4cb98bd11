from __future__ import annotations

import pytest

from imagerouter.core.selection import DEFAULT_ORDER, USE_CASES, BackendSelector, UseCase

ALL = ["GEMINI", "OPENAI", "STABILITY", "BFL", "LEONARDO", "IDEOGRAM", "FAL", "REPLICATE", "RECRAFT", "CLIPDROP"]


@pytest.fixture
def selector():
    return BackendSelector()


def test_logo_prompt_classified_with_high_confidence(selector):
    c = selector.classify("logo for a coffee shop with text")
    assert c is not None
    assert c.use_case == "logo"
    assert c.confidence > 0.8


def test_classification_is_idempotent(selector):
    prompts = ["a dragon over a medieval castle", "logo for a coffee shop with text", "quick sketch", "nothing here"]
    for p in prompts:
        assert selector.classify(p) == selector.classify(p)


def test_no_keyword_means_no_opinion(selector):
    assert selector.classify("zzz qqq") is None
    assert selector.classify("   ") is None


def test_multi_word_keywords_weigh_more(selector):
    c = selector.classify("remove background from this")
    assert c is not None
    assert c.use_case == "post-process"
    assert c.score == len("remove background") * 2


def test_ties_go_to_first_declared_use_case():
    sel = BackendSelector(use_cases=(
        UseCase("first", ("alpha",), ("OPENAI",), (), 0.8),
        UseCase("second", ("omega",), ("GEMINI",), (), 0.8),
    ))
    assert sel.classify("alpha omega").use_case == "first"
    assert sel.classify("omega alpha").use_case == "first"


def test_use_case_table_order_is_fixed():
    labels = [uc.label for uc in USE_CASES]
    assert labels[:3] == ["vector-design", "logo", "branding"]
    assert len(labels) == len(set(labels))


def test_explicit_available_backend_wins(selector):
    assert selector.select("a dragon", ALL, explicit="ideogram") == "IDEOGRAM"


def test_explicit_unavailable_falls_to_auto(selector):
    assert selector.select("logo for a coffee shop with text", ["IDEOGRAM", "OPENAI"], explicit="RECRAFT") == "IDEOGRAM"


def test_preferred_then_fallback(selector):
    assert selector.select("a dragon in a fantasy forest", ALL) == "LEONARDO"
    assert selector.select("a dragon in a fantasy forest", ["BFL", "OPENAI"]) == "BFL"


def test_quality_then_speed_heuristics(selector):
    # "4k" is not a use-case keyword
    assert selector.select("4k wallpaper", ["OPENAI", "STABILITY"]) == "STABILITY"
    assert selector.select("zzz", ["OPENAI", "STABILITY"]) == "OPENAI"


def test_default_order_then_first_available(selector):
    assert selector.select("zzz", ["REPLICATE", "GEMINI"]) == "GEMINI"
    assert selector.select("zzz", ["MOCK"]) == "MOCK"
    assert DEFAULT_ORDER[0] == "GEMINI"


def test_nothing_available(selector):
    assert selector.select("logo", []) is None


def test_recommend(selector):
    r = selector.recommend("logo for a coffee shop with text")
    assert r.primary == ("RECRAFT", "IDEOGRAM")
    assert r.use_case == "logo"
    assert "logo" in r.reason
    generic = selector.recommend("zzz")
    assert generic.use_case is None
    assert generic.primary[0] == "GEMINI"
