from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

GROWTH_RATIO = 1.3
FUZZY_MATCH_RATIO = 0.7


@dataclass(slots=True)
class IncrementalTextExtractor:
    """Compute only the not-yet-delivered part of a re-transcribed window.

    Consecutive chunks overlap, so the recognizer keeps repeating the tail of
    what it already produced. Strategies are tried in order and the first one
    that applies wins:

    1. the new transcript starts with the previous one (exact prefix);
    2. a suffix of the previous words equals a prefix of the new words;
    3. the new transcript is much longer than the previous one (context break);
    4. most previous words reappear, so only unseen words are kept;
    5. nothing confidently new, emit nothing.

    ``last_emitted_text`` is replaced by the new transcript in every case
    except the last one.
    """

    growth_ratio: float = GROWTH_RATIO
    fuzzy_match_ratio: float = FUZZY_MATCH_RATIO
    last_emitted_text: str = ""

    def reset(self) -> None:
        self.last_emitted_text = ""

    def extract_new_text(self, current: str) -> str:
        previous = self.last_emitted_text

        if current.startswith(previous):
            self.last_emitted_text = current
            return current[len(previous) :].strip()

        prev_words = previous.split()
        curr_words = current.split()

        overlap = _longest_suffix_prefix_overlap(prev_words, curr_words)
        if overlap > 0:
            self.last_emitted_text = current
            return " ".join(curr_words[overlap:])

        if len(current) > self.growth_ratio * len(previous):
            logger.debug("[Extractor] Growth heuristic: treating transcript as new context")
            self.last_emitted_text = current
            return current.strip()

        if prev_words:
            curr_vocab = set(curr_words)
            matched = sum(1 for word in prev_words if word in curr_vocab)
            if matched / len(prev_words) >= self.fuzzy_match_ratio:
                prev_vocab = set(prev_words)
                novel: list[str] = []
                for word in curr_words:
                    if word not in prev_vocab and word not in novel:
                        novel.append(word)
                self.last_emitted_text = current
                return " ".join(novel)

        logger.debug("[Extractor] No confident new content, suppressing transcript")
        return ""


def _longest_suffix_prefix_overlap(prev_words: list[str], curr_words: list[str]) -> int:
    for size in range(min(len(prev_words), len(curr_words)), 0, -1):
        if prev_words[-size:] == curr_words[:size]:
            return size
    return 0
