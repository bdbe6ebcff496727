"""
Pre/Post-Flight Validator

Gatekeeper around the narration generation call. Pre-flight checks run
before the call and must pass for the call to happen; post-flight checks
run on the generator's output and must pass for the turn to be committed.
Both are pure functions of their inputs.
"""

import re
from collections import Counter
from typing import List, Optional, Sequence

from questweaver.config import EngineConfig
from questweaver.engine import vocabulary as vocab
from questweaver.engine.analyzer import ConsistencyAnalyzer
from questweaver.schemas.consistency import Severity
from questweaver.schemas.context import StructuredContext
from questweaver.schemas.narrative import QuestState, stage_for_progress
from questweaver.schemas.turn import StructuredTurn
from questweaver.schemas.validation import (
    ValidationError,
    ValidationErrorKind,
    ValidationResult,
    ValidationWarning,
    ValidationWarningKind,
)
from questweaver.utils.logger import get_logger
from questweaver.utils.tokens import LONG_PROMPT_CHARS

logger = get_logger(__name__)

SENTENCE_SPLIT = re.compile(r"[.!?]")
MIN_SENTENCES = 2
MAX_SENTENCES = 4


def count_sentences(text: str) -> int:
    return len([part for part in SENTENCE_SPLIT.split(text) if part.strip()])


class ConsistencyValidator:
    """Runs pre-flight and post-flight checks for one generation call"""

    def __init__(
        self,
        config: EngineConfig,
        analyzer: Optional[ConsistencyAnalyzer] = None,
    ):
        self.config = config
        self.analyzer = analyzer or ConsistencyAnalyzer(
            repetition_threshold=config.repetition_threshold
        )

    def validate_before_call(
        self, state: QuestState, context: StructuredContext
    ) -> ValidationResult:
        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        self._check_state(state, errors, warnings)

        if context.context.is_empty:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.MISSING_CONTEXT,
                    message=f"Assembled context for '{context.context.specialist}' is empty",
                )
            )

        tokens = context.tokens
        if tokens.total > tokens.window:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.TOKEN_OVERFLOW,
                    message=f"Estimated {tokens.total} tokens exceeds window of {tokens.window}",
                    context=(
                        f"instructions={tokens.instructions} history={tokens.history} "
                        f"state={tokens.state} reservation={tokens.reservation} "
                        f"margin={tokens.margin}"
                    ),
                )
            )
        elif tokens.total > tokens.window * self.config.token_warning_ratio:
            warnings.append(
                ValidationWarning(
                    kind=ValidationWarningKind.TOKEN_BUDGET,
                    message=(
                        f"Token usage at {tokens.usage_ratio:.0%} of window "
                        f"({tokens.total}/{tokens.window})"
                    ),
                )
            )

        if len(context.scene) > LONG_PROMPT_CHARS:
            warnings.append(
                ValidationWarning(
                    kind=ValidationWarningKind.TOKEN_BUDGET,
                    message=(
                        f"Scene prompt is {len(context.scene)} chars "
                        f"(over {LONG_PROMPT_CHARS})"
                    ),
                )
            )

        result = ValidationResult(errors=errors, warnings=warnings)
        self._log_result("Pre-flight", state, result)
        return result

    def validate_after_response(
        self,
        prev_state: QuestState,
        new_state: QuestState,
        narration: str,
        structured_turn: StructuredTurn,
        recent_narrations: Optional[Sequence[str]] = None,
    ) -> ValidationResult:
        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        self._check_format(narration, structured_turn, errors, warnings)
        self._check_narration_quality(narration, errors, warnings)

        score = self.analyzer.analyze(
            current_state=new_state,
            new_narration=narration,
            previous_state=prev_state,
            new_causal_event=structured_turn.causal_event,
            recent_narrations=recent_narrations,
        )
        for issue in score.issues:
            if issue.severity == Severity.CRITICAL:
                errors.append(
                    ValidationError(
                        kind=ValidationErrorKind.CONSISTENCY_VIOLATION,
                        message=issue.description,
                        context=issue.context,
                    )
                )
            elif issue.severity == Severity.MAJOR:
                warnings.append(
                    ValidationWarning(
                        kind=ValidationWarningKind.CONSISTENCY_ISSUE,
                        message=issue.description,
                        context=issue.context,
                    )
                )

        result = ValidationResult(errors=errors, warnings=warnings, consistency=score)
        self._log_result("Post-flight", new_state, result)
        return result

    def _check_state(
        self,
        state: QuestState,
        errors: List[ValidationError],
        warnings: List[ValidationWarning],
    ):
        if not 1 <= state.tension <= 10:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.STATE_CORRUPTION,
                    message=f"Tension {state.tension} outside 1-10",
                )
            )

        for name, relation in sorted(state.npc_relations.items()):
            if not -10 <= relation.relationship <= 10:
                errors.append(
                    ValidationError(
                        kind=ValidationErrorKind.STATE_CORRUPTION,
                        message=f"Relationship {relation.relationship} with '{name}' outside -10..10",
                    )
                )

        ids = Counter(t.id for t in state.threads + state.archived_threads)
        for thread_id, count in sorted(ids.items()):
            if count > 1:
                errors.append(
                    ValidationError(
                        kind=ValidationErrorKind.STATE_CORRUPTION,
                        message=f"Duplicate thread id '{thread_id}' ({count} copies)",
                    )
                )

        if state.current_encounter > state.total_encounters + 1:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.STATE_CORRUPTION,
                    message=(
                        f"Encounter {state.current_encounter} past "
                        f"{state.total_encounters} planned encounters"
                    ),
                )
            )

        expected = stage_for_progress(state.current_encounter, state.total_encounters)
        if state.stage != expected:
            warnings.append(
                ValidationWarning(
                    kind=ValidationWarningKind.STATE_INTEGRITY,
                    message=(
                        f"Stage {state.stage.value} does not match progress "
                        f"{state.current_encounter}/{state.total_encounters} "
                        f"(expected {expected.value})"
                    ),
                )
            )

        for prev, curr in zip(state.chain, state.chain[1:]):
            if prev.consequence and curr.cause and prev.consequence != curr.cause:
                warnings.append(
                    ValidationWarning(
                        kind=ValidationWarningKind.STATE_INTEGRITY,
                        message="Causal chain gap",
                        context=f"'{prev.consequence}' -> '{curr.cause}'",
                    )
                )

        overlap = state.location_state.overlapping_areas()
        if overlap:
            warnings.append(
                ValidationWarning(
                    kind=ValidationWarningKind.STATE_INTEGRITY,
                    message=f"Areas in conflicting location sets: {', '.join(sorted(overlap))}",
                )
            )

    def _check_format(
        self,
        narration: str,
        structured_turn: StructuredTurn,
        errors: List[ValidationError],
        warnings: List[ValidationWarning],
    ):
        length = len(narration)
        if not narration.strip():
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.FORMAT_VIOLATION,
                    message="Narration is empty",
                )
            )
        elif length > self.config.max_narration_chars:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.FORMAT_VIOLATION,
                    message=(
                        f"Narration too long: {length} chars "
                        f"(max {self.config.max_narration_chars})"
                    ),
                    context=narration[:100],
                )
            )
        elif length < self.config.min_narration_chars:
            warnings.append(
                ValidationWarning(
                    kind=ValidationWarningKind.FORMAT_ISSUE,
                    message=(
                        f"Narration short: {length} chars "
                        f"(min {self.config.min_narration_chars})"
                    ),
                    context=narration,
                )
            )

        if structured_turn.progress is None:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.FORMAT_VIOLATION,
                    message="Missing quest progress in structured output",
                )
            )

        if not structured_turn.suggested_actions:
            warnings.append(
                ValidationWarning(
                    kind=ValidationWarningKind.FORMAT_ISSUE,
                    message="No suggested actions",
                )
            )

    def _check_narration_quality(
        self,
        narration: str,
        errors: List[ValidationError],
        warnings: List[ValidationWarning],
    ):
        for phrase in vocab.matching_words(narration, vocab.FORBIDDEN_SUGGESTION_PHRASES):
            warnings.append(
                ValidationWarning(
                    kind=ValidationWarningKind.NARRATIVE_QUALITY,
                    message=f"Contains suggestion phrase: '{phrase}'",
                    context=narration[:100],
                )
            )

        third_person = vocab.matching_words(narration, vocab.THIRD_PERSON_PHRASES)
        third_person += vocab.matching_words(narration, vocab.THIRD_PERSON_PRONOUNS)
        for marker in third_person:
            errors.append(
                ValidationError(
                    kind=ValidationErrorKind.FORMAT_VIOLATION,
                    message=f"Third-person narration: '{marker}'",
                    context=narration[:100],
                )
            )

        sentences = count_sentences(narration)
        if sentences < MIN_SENTENCES or sentences > MAX_SENTENCES:
            warnings.append(
                ValidationWarning(
                    kind=ValidationWarningKind.NARRATIVE_QUALITY,
                    message=(
                        f"{sentences} sentences (expected {MIN_SENTENCES}-{MAX_SENTENCES})"
                    ),
                    context=narration[:100],
                )
            )

    def _log_result(self, phase: str, state: QuestState, result: ValidationResult):
        extra = {
            "component": "Validator",
            "quest_id": state.quest_id,
            "errors": [e.kind.value for e in result.errors],
            "warnings": [w.kind.value for w in result.warnings],
        }
        for error in result.errors:
            logger.error(f"[Validator] {phase} error: {error.message}", extra=extra)
        for warning in result.warnings:
            logger.warning(f"[Validator] {phase} warning: {warning.message}", extra=extra)
        if result.is_valid:
            logger.debug(f"[Validator] {phase} passed", extra=extra)
