"""
Tests for per-key serialisation.
"""
import asyncio

import pytest

from licneg.core.services.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialised_and_released() -> None:
    locks = KeyedLock()
    active = 0
    peak = 0

    async def _critical() -> None:
        nonlocal active, peak
        async with locks.hold("neg-1"):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(_critical() for _ in range(5)))

    assert peak == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_do_not_block_each_other() -> None:
    locks = KeyedLock()
    entered = asyncio.Event()

    async def _first() -> None:
        async with locks.hold("neg-1"):
            await asyncio.wait_for(entered.wait(), timeout=1)

    async def _second() -> None:
        async with locks.hold("neg-2"):
            entered.set()

    await asyncio.gather(_first(), _second())
    assert len(locks) == 0
