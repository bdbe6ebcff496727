"""
QuestWeaver - narrative state and turn orchestration for LLM-driven quests
"""

__version__ = "0.1.0"
