"""
Exceptions raised by the narrative engine
"""


class NarrativeEngineError(Exception):
    """Base class for engine errors"""


class NoActiveQuestError(NarrativeEngineError):
    """An operation needs a quest but none has been started"""


class StateCorruptionError(NarrativeEngineError):
    """A quest state invariant would be violated"""


class TurnInProgressError(NarrativeEngineError):
    """Input arrived while the previous turn is still generating"""
