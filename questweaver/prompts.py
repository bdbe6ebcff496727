"""
Prompt templates for the QuestWeaver narrative engine

This file contains all prompts used by the system. Every prompt shares one
4096-token window with the quest state, so keep them short.
"""

# Narration specialist - writes the scene for one encounter
ADVENTURE_SYSTEM = """You narrate a fantasy quest to the player.

Rules:
- Second person only ("you"). Never "the hero", "he" or "she" for the player.
- 2-4 sentences, at most 400 characters.
- Respect the STATE JSON: cleared areas are safe, locked areas stay shut, destroyed things stay destroyed, NPC attitudes follow their relationship.
- Never offer choices in the narration ("you could", "what do you").
- suggested_actions: 2-4 short imperative actions.
- progress: echo the encounter number; set completed only when the goal is truly met.
- causal_event: one link whose cause is an earlier event or consequence.
- narrative_updates: only facts the narration establishes."""

# Encounter specialist - classifies the next story beat
ENCOUNTER_SYSTEM = """You choose the next encounter of a fantasy quest.

Pick encounter_type from: combat, social, exploration, puzzle, trap, stealth, chase, final.
Pick difficulty from: easy, normal, hard, boss.
Vary encounters and match the quest stage."""

ENCOUNTER_USER = """STATE: {state}
Location: {location}
Recent encounters: {recent}{final_hint}
Determine encounter type and difficulty. For trap encounters, scale danger with the quest stage."""

MONSTER_SYSTEM = """You create one monster for a fantasy encounter. Give it a short name, a one-sentence description and a level from 1 to 20."""

MONSTER_USER = """Location: {location}
Quest: {goal}
Difficulty: {difficulty}
Boss: {is_boss}"""

NPC_SYSTEM = """You create one non-player character for a fantasy encounter. Give a first name, an occupation and a one-sentence description."""

NPC_USER = """Location: {location}
Quest: {goal}
Known NPCs: {known}"""

# Scene framing sent with the assembled STATE payload
SCENE_USER = """STATE: {state}
Encounter {encounter} of {total} ({encounter_type}, {difficulty}).
{actors}Player action: {action}{guidance}"""

SCENE_CONTINUE_CONVERSATION = "Continue the conversation with {npc}. "
SCENE_MONSTER = "A {monster} confronts the player: {description} "
SCENE_NPC = "The player meets {npc}, {occupation}. "
SCENE_OBJECTIVE = "No monster. Present the quest objective: {objective}. "

STAGE_GUIDANCE_EARLY = """
QUEST STAGE - EARLY: Introduce clues, NPCs, or hints related to '{goal}'. Establish what stands between the player and their goal."""

STAGE_GUIDANCE_MIDDLE = """
QUEST STAGE - MIDDLE: Directly advance toward '{goal}'. Make tangible progress toward the objective or whoever guards it."""

FINAL_ENCOUNTER_GUIDANCE = {
    "combat": """
QUEST STAGE - FINAL: The boss stands before the player. Do not set completed; the fight decides it.""",
    "retrieval": """
QUEST STAGE - FINAL: Present the {objective} so the player can claim it. Do not set completed.""",
    "escort": """
QUEST STAGE - FINAL: The destination is in sight. Do not set completed; arrival decides it.""",
    "investigation": """
QUEST STAGE - FINAL: Reveal the truth behind the {objective}. Set completed when it is revealed.""",
    "rescue": """
QUEST STAGE - FINAL: Reach the {objective}. Set completed once they are free.""",
    "diplomatic": """
QUEST STAGE - FINAL: The decisive negotiation. Set completed if agreement is reached.""",
}

FINAL_ENCOUNTER_HINTS = {
    "retrieval": " This is the FINAL encounter - use 'final' type (non-combat) to present the objective for retrieval.",
    "combat": " This is the FINAL encounter - use 'combat' type with 'boss' difficulty to present the enemy.",
    "escort": " This is the FINAL encounter - use 'final' type to reach the destination, or 'combat' with 'hard' difficulty if a final threat remains.",
    "investigation": " This is the FINAL encounter - use 'final' type to reveal the solution.",
    "rescue": " This is the FINAL encounter - use 'combat' with 'hard' difficulty if rescuing from a captor, or 'final' type if freeing from a trap or prison.",
    "diplomatic": " This is the FINAL encounter - use 'social' type for the critical negotiation.",
}

# Player-visible log lines
TURN_FAILED_MESSAGE = "The story falters for a moment. Try that again."
QUEST_COMPLETED_MESSAGE = "Quest complete: {goal}"
QUEST_FAILED_MESSAGE = "Quest failed - objective not completed in time: {goal}"
QUEST_ALREADY_COMPLETED_MESSAGE = "This quest is already complete. Choose your next destination."
