from __future__ import annotations

from streamscribe.core.stt.extractor import IncrementalTextExtractor


def test_first_transcript_is_emitted_whole():
    ex = IncrementalTextExtractor()
    assert ex.extract_new_text("Hello world") == "Hello world"
    assert ex.last_emitted_text == "Hello world"


def test_exact_prefix_emits_only_suffix():
    ex = IncrementalTextExtractor()
    ex.extract_new_text("Hello world")
    assert ex.extract_new_text("Hello world how are you") == "how are you"
    assert ex.last_emitted_text == "Hello world how are you"


def test_repeated_input_is_idempotent():
    ex = IncrementalTextExtractor()
    assert ex.extract_new_text("the quick brown fox") == "the quick brown fox"
    assert ex.extract_new_text("the quick brown fox") == ""


def test_word_overlap_across_chunk_boundary():
    ex = IncrementalTextExtractor(last_emitted_text="we walked to the old mill")
    assert ex.extract_new_text("the old mill and then went home") == "and then went home"
    assert ex.last_emitted_text == "the old mill and then went home"


def test_longest_overlap_wins():
    ex = IncrementalTextExtractor(last_emitted_text="go go go")
    assert ex.extract_new_text("go go go stop") == "stop"


def test_growth_heuristic_returns_entire_transcript():
    ex = IncrementalTextExtractor(last_emitted_text="alpha beta")
    current = "completely unrelated sentence about weather"
    assert ex.extract_new_text(current) == current
    assert ex.last_emitted_text == current


def test_low_overlap_without_growth_emits_nothing():
    ex = IncrementalTextExtractor(last_emitted_text="alpha beta gamma delta")
    assert ex.extract_new_text("one two three four") == ""
    assert ex.last_emitted_text == "alpha beta gamma delta"


def test_fuzzy_majority_emits_unseen_words_in_order():
    ex = IncrementalTextExtractor(last_emitted_text="I think that we should go")
    # 5/6 previous words reappear, no suffix/prefix overlap, not much longer
    result = ex.extract_new_text("think that we should now go")
    assert result == "now"
    assert ex.last_emitted_text == "think that we should now go"


def test_fuzzy_majority_deduplicates_new_words():
    ex = IncrementalTextExtractor(last_emitted_text="a b c d e f g h i j")
    assert ex.extract_new_text("a b c d e f g x x j") == "x"


def test_empty_transcript_after_text_is_suppressed():
    ex = IncrementalTextExtractor(last_emitted_text="hello")
    assert ex.extract_new_text("") == ""
    assert ex.last_emitted_text == "hello"


def test_reset_clears_history():
    ex = IncrementalTextExtractor(last_emitted_text="hello")
    ex.reset()
    assert ex.extract_new_text("hello") == "hello"
