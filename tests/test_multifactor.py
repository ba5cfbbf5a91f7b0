"""Tests for the single-slot multifactor rendezvous."""

import asyncio

import pytest

from accountdesk.exceptions import MultifactorCancelled
from accountdesk.models import MultifactorInfo, MultifactorMethod
from accountdesk.services.multifactor import MultifactorChallenge


@pytest.fixture
def info():
    return MultifactorInfo(method=MultifactorMethod.SMS, code_length=6)


class TestMultifactorChallenge:

    @pytest.mark.asyncio
    async def test_submit_resolves_waiter_with_code_unchanged(self, info, logger):
        challenge = MultifactorChallenge(info, logger)
        waiter = asyncio.create_task(challenge.wait())
        await asyncio.sleep(0)

        assert challenge.submit(" 12 34 ")
        assert await waiter == " 12 34 "
        assert challenge.is_resolved

    @pytest.mark.asyncio
    async def test_cancel_fails_waiter(self, info, logger):
        challenge = MultifactorChallenge(info, logger)
        waiter = asyncio.create_task(challenge.wait())
        await asyncio.sleep(0)

        assert challenge.cancel()
        with pytest.raises(MultifactorCancelled):
            await waiter

    @pytest.mark.asyncio
    async def test_second_resolution_is_ignored(self, info, logger):
        challenge = MultifactorChallenge(info, logger)
        assert challenge.submit("111111")
        assert not challenge.submit("222222")
        assert not challenge.cancel()
        assert await challenge.wait() == "111111"

    @pytest.mark.asyncio
    async def test_cancel_then_submit_keeps_cancellation(self, info, logger):
        challenge = MultifactorChallenge(info, logger)
        assert challenge.cancel()
        assert not challenge.submit("111111")
        with pytest.raises(MultifactorCancelled):
            await challenge.wait()

    @pytest.mark.asyncio
    async def test_challenges_have_distinct_ids(self, info, logger):
        first = MultifactorChallenge(info, logger)
        second = MultifactorChallenge(info, logger)
        assert first.id != second.id
        assert "pending" in repr(first)

    def test_cancelled_error_is_not_user_visible(self):
        assert MultifactorCancelled().user_visible is False
