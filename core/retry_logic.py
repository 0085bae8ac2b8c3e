"""
Retry Logic - Attempt budget for model-generated content

Math questions and memory summaries are generated by the model and then
checked locally. Output that fails the check, and provider hiccups that
may clear on their own, spend one attempt each. Anything else ends the
generation at once. Either way the caller sees a single GenerationError
(or its own subclass) with the reason of the last failed attempt.
"""

import logging
from typing import Awaitable, Callable, List, Type, TypeVar

import anthropic

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Provider failures worth another attempt
TRANSIENT_PROVIDER_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class UnusableOutput(Exception):
    """The model answered, but the answer failed local validation"""
    pass


class GenerationError(Exception):
    """No usable output was produced"""

    def __init__(self, message: str, reasons: List[str]):
        super().__init__(message)
        self.reasons = reasons

    @property
    def attempts(self) -> int:
        return len(self.reasons)


async def retry_generation(
    attempt: Callable[[], Awaitable[T]],
    what: str,
    max_attempts: int,
    error_type: Type[GenerationError] = GenerationError,
) -> T:
    """
    Call attempt() until it returns, at most max_attempts times.

    Args:
        attempt: Coroutine function producing one validated result
        what: Short description for logs and error messages
        max_attempts: Attempt budget
        error_type: GenerationError subclass raised on failure

    Raises:
        error_type: Budget spent, or a failure that retrying can't fix
    """
    reasons: List[str] = []

    for number in range(1, max_attempts + 1):
        try:
            result = await attempt()
        except (UnusableOutput, *TRANSIENT_PROVIDER_ERRORS) as e:
            reasons.append(str(e))
            logger.warning(f"{what}: attempt {number}/{max_attempts} rejected: {e}")
            continue
        except Exception as e:
            reasons.append(str(e))
            logger.error(f"{what}: attempt {number}/{max_attempts} failed, not retrying: {e}")
            raise error_type(f"{what} failed: {e}", reasons) from e

        if number > 1:
            logger.info(f"{what}: succeeded on attempt {number}/{max_attempts}")
        return result

    raise error_type(
        f"{what} gave up after {max_attempts} attempts (last: {reasons[-1] if reasons else 'none'})",
        reasons,
    )
