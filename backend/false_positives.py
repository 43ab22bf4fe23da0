"""
False Positive Filter - Drops harmless phrases models like to flag
Everyday vocabulary, family words, devices and rooms show up in nearly every
transcript and are almost never the actual policy problem.
"""

import re
import logging
from typing import Iterable

logger = logging.getLogger(__name__)

COMMON_WORDS = [
    'you', 'worried', 'rival', 'team', 'player', 'goal', 'score', 'match', 'game', 'play',
    'win', 'lose', 'good', 'bad', 'big', 'small', 'new', 'old', 'first', 'last', 'best', 'worst',
    'money', 'dollar', 'price', 'cost', 'value', 'worth', 'expensive', 'cheap', 'million', 'billion',
    'year', 'month', 'week', 'day', 'time', 'people', 'person', 'thing', 'way', 'work',
    'make', 'take', 'get', 'go', 'come', 'see', 'know', 'think', 'feel', 'want', 'need', 'like',
    'look', 'say', 'tell', 'ask', 'give', 'find', 'use', 'try', 'call', 'help', 'start', 'stop',
    'keep', 'put', 'bring', 'turn', 'move', 'change', 'show', 'hear', 'run', 'walk',
    'sit', 'stand', 'wait', 'watch', 'read', 'write', 'speak', 'talk', 'listen', 'learn', 'teach',
    'buy', 'sell', 'pay', 'earn', 'spend', 'save', 'beat', 'hit', 'catch', 'throw',
    'kick', 'jump', 'swim', 'dance', 'sing', 'laugh', 'cry', 'smile', 'frown', 'love', 'hate',
    'dislike', 'happy', 'sad', 'angry', 'excited', 'bored', 'tired', 'hungry', 'thirsty',
    'hot', 'cold', 'warm', 'cool', 'fast', 'slow', 'quick', 'easy', 'hard', 'simple', 'complex',
    'right', 'wrong', 'true', 'false', 'yes', 'no', 'maybe', 'sure', 'okay', 'fine', 'great', 'awesome',
]

FAMILY_TERMS = [
    'kid', 'kids', 'child', 'children', 'boy', 'girl', 'son', 'daughter',
    'family', 'parent', 'mom', 'dad', 'mother', 'father', 'sister', 'brother', 'baby', 'toddler',
    'teen', 'teenager', 'youth', 'young', 'elderly', 'senior', 'adult', 'grown', 'grownup',
    'friend', 'buddy', 'pal', 'mate', 'colleague', 'neighbor', 'cousin', 'uncle', 'aunt', 'grandma',
    'grandpa', 'grandmother', 'grandfather', 'nephew', 'niece', 'relative', 'relation',
]

TECHNOLOGY_TERMS = [
    'phone', 'device', 'mobile', 'cell', 'smartphone', 'iphone', 'android', 'tablet', 'computer',
    'laptop', 'desktop', 'screen', 'display', 'monitor', 'keyboard', 'mouse', 'touch', 'tap',
    'swipe', 'click', 'type', 'text', 'message', 'ring', 'dial', 'number', 'contact', 'address',
    'email', 'mail',
]

HOME_TERMS = [
    'home', 'house', 'room', 'bedroom', 'kitchen', 'bathroom', 'living', 'dining', 'office',
    'school', 'class', 'teacher', 'student', 'classroom', 'homework', 'study', 'education',
]

FALSE_POSITIVE_WORDS = frozenset(
    w.lower() for w in COMMON_WORDS + FAMILY_TERMS + TECHNOLOGY_TERMS + HOME_TERMS
)

# Filler words that never make a phrase risky on their own
STOP_WORDS = frozenset({
    'a', 'an', 'the', 'and', 'or', 'but', 'of', 'to', 'in', 'on', 'at', 'for', 'with',
    'is', 'are', 'was', 'were', 'be', 'it', 'this', 'that', 'my', 'your', 'our', 'their',
    'i', 'we', 'they', 'he', 'she', 'me', 'us', 'them', 'so', 'very', 'really',
})

MIN_PHRASE_LENGTH = 3

# Unicode-aware, so Cyrillic, CJK or Arabic phrases are seen as words
_WORD_RE = re.compile(r"[\w']+")


def is_false_positive(phrase: str) -> bool:
    """
    True when a flagged phrase is harmless.

    Matching is by whole word, so "kill the kid" is kept because "kill" is
    not allow-listed even though "kid" is. Words in any script count, so
    non-Latin phrases are kept unless they are empty. A phrase is dropped
    when it is a short Latin fragment, has no words at all, or every word in
    it is allow-listed vocabulary or filler.
    """
    if not phrase:
        return True
    cleaned = phrase.strip().lower()
    # Length floor is for Latin fragments; two CJK characters can be a whole word
    if len(cleaned) < MIN_PHRASE_LENGTH and cleaned.isascii():
        return True

    words = _WORD_RE.findall(cleaned)
    if not words:
        return True

    content_words = [w for w in words if w not in STOP_WORDS]
    if not content_words:
        return True
    return all(w in FALSE_POSITIVE_WORDS for w in content_words)


def filter_false_positives(phrases: Iterable[str]) -> list[str]:
    """Drop harmless phrases, keeping order"""
    kept = []
    dropped = 0
    for phrase in phrases:
        if is_false_positive(phrase):
            dropped += 1
        else:
            kept.append(phrase)
    if dropped:
        logger.debug(f"Filtered {dropped} false-positive phrase(s)")
    return kept
