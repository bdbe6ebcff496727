"""
HTTP API routers for QuestWeaver
"""
