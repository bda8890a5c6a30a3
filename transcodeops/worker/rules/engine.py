"""
Workflow matching - evaluates media against ordered criteria.

Criteria fold strictly left to right: (((c0) op1 c1) op2 c2) ... where each
criteria's combine type says how it joins everything before it. There is no
operator precedence beyond list order.
"""
import re
import logging
from typing import Any, Iterable, List, Optional

from transcodeops.worker.errors import ValidationError
from .models import (
    ACCEPTABLE_TYPES,
    NUMERIC_KEYS,
    CombineType,
    Criteria,
    CriteriaType,
    Media,
    Workflow,
)

logger = logging.getLogger(__name__)


def parse_number(value: Any) -> Optional[float]:
    """Parse a numeric comparand. Resolution labels such as '1080p' parse to 1080."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip().lower()
    if text.endswith("p"):
        text = text[:-1]
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def _compile(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ValidationError(f"'{pattern}' is not a valid regular expression: {e}")


def _strip_slashes(value: str) -> str:
    if len(value) >= 2 and value.startswith("/") and value.endswith("/"):
        return value[1:-1]
    return value


def validate_criteria(criteria: Criteria) -> None:
    """
    Ensure a criteria is legal, raising ValidationError if not.

    - the key must accept the comparison type
    - pattern comparisons need a compilable regular expression
    - numeric keys need a numeric value for value comparisons
    """
    if criteria.type not in ACCEPTABLE_TYPES.get(criteria.key, ()):
        raise ValidationError(
            f"match key {criteria.key.value} does not accept match type {criteria.type.value}"
        )

    if criteria.type in (CriteriaType.is_present, CriteriaType.is_not_present):
        return

    if criteria.type in (CriteriaType.matches, CriteriaType.does_not_match):
        _compile(_strip_slashes(criteria.value))
    elif criteria.key in NUMERIC_KEYS:
        if parse_number(criteria.value) is None:
            raise ValidationError(
                f"match type {criteria.type.value} expects a number; '{criteria.value}' is not numeric"
            )
    elif len(criteria.value) >= 2 and criteria.value.startswith("/") and criteria.value.endswith("/"):
        _compile(_strip_slashes(criteria.value))


def validate_workflow(workflow: Workflow) -> None:
    """Validate every criteria of a workflow, reporting the first illegal one"""
    for index, criteria in enumerate(workflow.criteria):
        try:
            validate_criteria(criteria)
        except ValidationError as e:
            raise ValidationError(f"workflow '{workflow.label}' criteria #{index}: {e.message}")


def _test_value(criteria: Criteria, value: Any) -> bool:
    """Raw predicate. Raises ValidationError when the criteria cannot be applied."""
    if criteria.type == CriteriaType.is_present:
        return value is not None
    if criteria.type == CriteriaType.is_not_present:
        return value is None

    validate_criteria(criteria)
    if value is None:
        return False

    if criteria.key in NUMERIC_KEYS:
        actual = parse_number(value)
        expected = parse_number(criteria.value)
        if actual is None:
            return False

        if criteria.type == CriteriaType.equals:
            return actual == expected
        if criteria.type == CriteriaType.not_equals:
            return actual != expected
        # The criteria value is the left operand: "less_than 7" holds for 7 < attribute
        if criteria.type == CriteriaType.less_than:
            return expected < actual
        if criteria.type == CriteriaType.greater_than:
            return expected > actual
        raise ValidationError(f"match type {criteria.type.value} is not numeric")

    actual = str(value)
    if criteria.type in (CriteriaType.matches, CriteriaType.does_not_match):
        found = _compile(_strip_slashes(criteria.value)).search(actual) is not None
        return found if criteria.type == CriteriaType.matches else not found

    # Values wrapped in slashes are patterns, anything else is exact
    if criteria.value != _strip_slashes(criteria.value):
        equal = _compile(_strip_slashes(criteria.value)).search(actual) is not None
    else:
        equal = actual == criteria.value

    if criteria.type == CriteriaType.equals:
        return equal
    if criteria.type == CriteriaType.not_equals:
        return not equal
    raise ValidationError(f"match type {criteria.type.value} is not a string comparison")


def check_criteria(criteria: Criteria, media: Media) -> bool:
    """Predicate for one criteria. Malformed criteria fail closed instead of raising."""
    try:
        return _test_value(criteria, media.attribute(criteria.key))
    except ValidationError as e:
        logger.warning(f"{criteria} cannot be applied to {media}, treating as no match: {e.message}")
        return False


def evaluate(media: Media, criteria_list: List[Criteria]) -> bool:
    """Fold criteria left to right. An empty list imposes no constraints."""
    if not criteria_list:
        return True

    result = check_criteria(criteria_list[0], media)
    for criteria in criteria_list[1:]:
        current = check_criteria(criteria, media)
        if criteria.combine_type == CombineType.OR:
            result = result or current
        else:
            result = result and current

    return result


def is_workflow_eligible(workflow: Workflow, media: Media) -> bool:
    """A disabled workflow is never eligible"""
    if not workflow.enabled:
        return False
    return evaluate(media, workflow.criteria)


def first_eligible_workflow(workflows: Iterable[Workflow], media: Media) -> Optional[Workflow]:
    """First workflow (in the order given) whose criteria accept the media"""
    for workflow in workflows:
        if is_workflow_eligible(workflow, media):
            logger.debug(f"Workflow '{workflow.label}' accepted {media}")
            return workflow
    return None
