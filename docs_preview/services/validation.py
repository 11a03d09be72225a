"""
PR number validation.

The PR number reaches the publish side as plain text written by an untrusted
build. It is the only attacker-controlled value the publish side reads, and it
ends up in a directory name, a commit message and a comment API call, so it
goes through ``validate_pr_number`` before anything else touches it.
"""

import re
from typing import Union

from docs_preview.exceptions import DocsPreviewError
from docs_preview.models.publish import InvalidPRNumber, ValidPRNumber

# ASCII digits only; \d would also accept other Unicode decimal digits
_PR_NUMBER_PATTERN = re.compile(r"[0-9]+")

# Longer numbers are not real PR ids and would also trip int() digit limits
MAX_PR_NUMBER_DIGITS = 18

PRNumberValidation = Union[ValidPRNumber, InvalidPRNumber]


class MalformedPRNumberError(DocsPreviewError):
    """Raised when the pr_number artifact is not a plain decimal number."""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        self.reason = reason
        super().__init__(f"malformed PR number {raw!r}: {reason}")


def validate_pr_number(raw: str) -> PRNumberValidation:
    """
    Validate untrusted PR number text.

    The whole string must match ``^[0-9]+$``. Nothing is stripped or
    sanitized here; callers decide what framing to remove before calling.

    Args:
        raw: Text read from the pr_number artifact

    Returns:
        ValidPRNumber with the integer value, or InvalidPRNumber with a reason
    """
    if not isinstance(raw, str):
        return InvalidPRNumber(reason=f"expected text, got {type(raw).__name__}")

    if not raw:
        return InvalidPRNumber(reason="empty value")

    if _PR_NUMBER_PATTERN.fullmatch(raw) is None:
        return InvalidPRNumber(reason="must contain only digits")

    if len(raw) > MAX_PR_NUMBER_DIGITS:
        return InvalidPRNumber(reason=f"too long (more than {MAX_PR_NUMBER_DIGITS} digits)")

    return ValidPRNumber(value=int(raw))


def decode_pr_number_artifact(data: bytes) -> str:
    """
    Decode the pr_number artifact into the text to validate.

    The build writes the number as a single line, so trailing line
    terminators are removed. Any other whitespace is left in place and will
    fail validation.
    """
    try:
        text = data.decode("ascii")
    except UnicodeDecodeError as e:
        raise MalformedPRNumberError(repr(data[:32]), "not ASCII text") from e

    return text.rstrip("\r\n")


def require_valid_pr_number(raw: str) -> ValidPRNumber:
    """Validate ``raw`` or raise MalformedPRNumberError."""
    result = validate_pr_number(raw)

    if isinstance(result, InvalidPRNumber):
        raise MalformedPRNumberError(raw, result.reason)

    return result
