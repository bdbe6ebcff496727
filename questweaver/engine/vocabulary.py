"""
Keyword lookup tables used by the consistency analyzer, the validator and
the turn helpers. One frozenset per category so each can be tested on its
own.

Terms match at a word start (``\\bterm``), so "attack" also matches
"attacks" and "attacked". Whole-word tables are matched with a word
boundary on both sides.
"""

import re
from functools import lru_cache
from typing import FrozenSet, Iterable, List, Pattern

# Spatial consistency
DANGER_WORDS: FrozenSet[str] = frozenset(
    {"ambush", "guards", "enemies", "attack", "danger", "threat"}
)
ACCESS_WORDS: FrozenSet[str] = frozenset(
    {"enter", "inside", "walk into", "step into", "through the"}
)
INTACT_WORDS: FrozenSet[str] = frozenset({"intact", "standing", "unscathed", "pristine"})

# NPC consistency
FRIENDLY_WORDS: FrozenSet[str] = frozenset(
    {"smiles", "greets warmly", "welcomes", "friendly", "kindly", "helps"}
)
HOSTILE_WORDS: FrozenSet[str] = frozenset(
    {"attacks", "threatens", "glares", "hostile", "snarls"}
)
REUNION_WORDS: FrozenSet[str] = frozenset(
    {"again", "once more", "returns", "back", "remember"}
)

# Post-flight narration format
THIRD_PERSON_PHRASES: FrozenSet[str] = frozenset({"the hero", "the warrior", "the adventurer"})
THIRD_PERSON_PRONOUNS: FrozenSet[str] = frozenset({"he", "she"})
FORBIDDEN_SUGGESTION_PHRASES: FrozenSet[str] = frozenset(
    {"you could", "you can", "you may", "what do you"}
)

# Quest alignment
STOPWORDS: FrozenSet[str] = frozenset(
    {
        "the", "and", "that", "this", "with", "from", "into", "onto", "their",
        "there", "them", "they", "were", "what", "when", "where", "which",
        "while", "about", "after", "before", "your", "have", "been", "will",
        "would", "could", "should", "some", "than", "then", "over", "under",
        "upon", "also", "just", "only", "very", "must", "make", "find",
    }
)

# Conversation continuation
TALK_WORDS: FrozenSet[str] = frozenset(
    {"speak", "talk", "ask", "tell", "say", "reply", "answer", "question", "chat"}
)
CONVERSATION_END_WORDS: FrozenSet[str] = frozenset(
    {
        "leave", "goodbye", "farewell", "walk away", "depart", "attack",
        "flee", "run", "ignore", "move on", "continue on", "explore",
    }
)

# Quest completion checks
ACQUISITION_WORDS: FrozenSet[str] = frozenset(
    {"take", "grab", "pick up", "retrieve", "collect", "claim", "seize", "obtain", "pocket"}
)
ARRIVAL_WORDS: FrozenSet[str] = frozenset(
    {"arrive", "reach", "made it", "safe", "destination", "delivered"}
)
CASUALTY_WORDS: FrozenSet[str] = frozenset(
    {"dies", "died", "dead", "killed", "slain", "falls lifeless"}
)

# Encounter summary keywords
ACTION_KEYWORDS: FrozenSet[str] = frozenset(
    {
        "attack", "fight", "flee", "run", "talk", "speak", "search", "investigate",
        "open", "take", "use", "cast", "drink", "eat", "hide", "sneak", "climb",
    }
)
ENTITY_KEYWORDS: FrozenSet[str] = frozenset(
    {
        "monster", "goblin", "rat", "skeleton", "zombie", "orc", "dragon",
        "chest", "door", "trap", "room", "corridor", "stairs",
    }
)
OUTCOME_KEYWORDS: FrozenSet[str] = frozenset(
    {
        "defeated", "killed", "found", "discovered", "took damage", "healed",
        "gained", "lost", "escaped", "failed", "succeeded",
    }
)

WORD_RE = re.compile(r"[a-z0-9']+")


@lru_cache(maxsize=None)
def _prefix_pattern(term: str) -> Pattern:
    return re.compile(r"\b" + re.escape(term.lower()))


@lru_cache(maxsize=None)
def _word_pattern(term: str) -> Pattern:
    return re.compile(r"\b" + re.escape(term.lower()) + r"\b")


def contains_term(text: str, term: str) -> bool:
    """True when ``term`` starts a word somewhere in ``text`` (case-insensitive)."""
    return _prefix_pattern(term).search(text.lower()) is not None


def contains_word(text: str, term: str) -> bool:
    """True when ``term`` appears as a whole word in ``text`` (case-insensitive)."""
    return _word_pattern(term).search(text.lower()) is not None


def matching_terms(text: str, terms: Iterable[str]) -> List[str]:
    """Terms from ``terms`` that start a word in ``text``, in sorted order."""
    lowered = text.lower()
    return sorted(t for t in terms if _prefix_pattern(t).search(lowered))


def matching_words(text: str, terms: Iterable[str]) -> List[str]:
    lowered = text.lower()
    return sorted(t for t in terms if _word_pattern(t).search(lowered))


def words(text: str) -> List[str]:
    return WORD_RE.findall(text.lower())


def content_words(text: str) -> List[str]:
    """Words longer than three characters that are not stopwords, in order."""
    return [w for w in words(text) if len(w) > 3 and w not in STOPWORDS]
