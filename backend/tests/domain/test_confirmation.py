import re

import pytest
from spacebook.domain.confirmation import claim_confirmation_code, generate_confirmation_code
from spacebook.domain.errors import CodeGenerationExhaustedError, DuplicateConfirmationCodeError

CODE_PATTERN = re.compile(r"^[A-Z0-9]{10}$")


def test_generated_code_matches_format() -> None:
    for _ in range(100):
        assert CODE_PATTERN.match(generate_confirmation_code())


def test_generated_codes_do_not_repeat_in_large_sample() -> None:
    codes = {generate_confirmation_code() for _ in range(10_000)}
    assert len(codes) == 10_000


async def _insert(code: str) -> str:
    return code


@pytest.mark.asyncio
async def test_claim_skips_taken_codes() -> None:
    drawn = iter(["TAKEN00001", "TAKEN00002", "FREE000003"])
    taken = {"TAKEN00001", "TAKEN00002"}

    async def exists(code: str) -> bool:
        return code in taken

    code = await claim_confirmation_code(exists, _insert, generate=lambda: next(drawn))
    assert code == "FREE000003"


@pytest.mark.asyncio
async def test_claim_gives_up_after_attempts() -> None:
    calls: list[str] = []

    async def exists(code: str) -> bool:
        calls.append(code)
        return True

    with pytest.raises(CodeGenerationExhaustedError) as excinfo:
        await claim_confirmation_code(exists, _insert, attempts=3)
    assert len(calls) == 3
    assert excinfo.value.message == "Failed to generate unique confirmation code after 3 attempts"


@pytest.mark.asyncio
async def test_taken_and_collided_codes_share_one_budget() -> None:
    drawn = iter(["TAKEN00001", "RACED00002", "TAKEN00003", "RACED00004", "NEVERDRAWN"])
    looked_up: list[str] = []
    inserted: list[str] = []

    async def exists(code: str) -> bool:
        looked_up.append(code)
        return code.startswith("TAKEN")

    async def insert(code: str) -> str:
        inserted.append(code)
        raise DuplicateConfirmationCodeError("confirmation code already taken")

    with pytest.raises(CodeGenerationExhaustedError):
        await claim_confirmation_code(exists, insert, attempts=4, generate=lambda: next(drawn))
    assert looked_up == ["TAKEN00001", "RACED00002", "TAKEN00003", "RACED00004"]
    assert inserted == ["RACED00002", "RACED00004"]


@pytest.mark.asyncio
async def test_claim_retries_after_insert_collision() -> None:
    drawn = iter(["RACED00001", "FRESH00002"])

    async def exists(code: str) -> bool:
        return False

    async def insert(code: str) -> str:
        if code == "RACED00001":
            raise DuplicateConfirmationCodeError("confirmation code already taken")
        return code

    assert await claim_confirmation_code(exists, insert, generate=lambda: next(drawn)) == "FRESH00002"
