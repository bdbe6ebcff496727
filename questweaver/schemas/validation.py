"""
Validation result schemas and turn-output parsing
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .consistency import ConsistencyScore
from .turn import StructuredTurn


class ValidationErrorKind(str, Enum):
    STATE_CORRUPTION = "state_corruption"
    MISSING_CONTEXT = "missing_context"
    TOKEN_OVERFLOW = "token_overflow"
    FORMAT_VIOLATION = "format_violation"
    CONSISTENCY_VIOLATION = "consistency_violation"


class ValidationWarningKind(str, Enum):
    STATE_INTEGRITY = "state_integrity"
    TOKEN_BUDGET = "token_budget"
    FORMAT_ISSUE = "format_issue"
    NARRATIVE_QUALITY = "narrative_quality"
    CONSISTENCY_ISSUE = "consistency_issue"


class ValidationError(BaseModel):
    """A blocking problem found before or after a generation call"""

    kind: ValidationErrorKind
    message: str
    context: str = ""


class ValidationWarning(BaseModel):
    """A non-blocking problem, recorded and logged"""

    kind: ValidationWarningKind
    message: str
    context: str = ""


class ValidationResult(BaseModel):
    errors: List[ValidationError] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    consistency: Optional[ConsistencyScore] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error_kinds(self) -> List[ValidationErrorKind]:
        return [e.kind for e in self.errors]

    def warning_kinds(self) -> List[ValidationWarningKind]:
        return [w.kind for w in self.warnings]

    @property
    def only_consistency_errors(self) -> bool:
        return bool(self.errors) and all(
            e.kind == ValidationErrorKind.CONSISTENCY_VIOLATION for e in self.errors
        )


def parse_structured_turn(data: Union[str, Dict[str, Any], BaseModel]) -> StructuredTurn:
    """Parse raw generator output into a StructuredTurn.

    Accepts a JSON string, a dict, or an already-built model. Raises
    ValueError when the output does not have the expected shape.
    """
    if isinstance(data, StructuredTurn):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Turn output is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"Turn output must be an object, got {type(data).__name__}")
    try:
        return StructuredTurn(**data)
    except PydanticValidationError as e:
        raise ValueError(f"Invalid turn output: {e}")
