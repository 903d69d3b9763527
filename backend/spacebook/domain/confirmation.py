import logging
import secrets
import string
from typing import Awaitable, Callable, TypeVar

from .errors import CodeGenerationExhaustedError, DuplicateConfirmationCodeError

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 10

T = TypeVar("T")


def generate_confirmation_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


async def claim_confirmation_code(
    exists: Callable[[str], Awaitable[bool]],
    insert: Callable[[str], Awaitable[T]],
    *,
    attempts: int = 10,
    generate: Callable[[], str] = generate_confirmation_code,
) -> T:
    """
    Draw codes until one is free and its insert succeeds.

    A code already taken up front and a code that loses the race on insert
    both use up one of ``attempts``. The unique constraint on insert remains
    the final arbiter; the lookup only keeps collisions out of the common path.
    """
    for _ in range(attempts):
        code = generate()
        if await exists(code):
            continue
        try:
            return await insert(code)
        except DuplicateConfirmationCodeError:
            logger.warning("confirmation code collided on insert, drawing a new one")
    raise CodeGenerationExhaustedError(attempts)
