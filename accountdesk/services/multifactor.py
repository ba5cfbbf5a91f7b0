"""
Multifactor Challenge.

Single-slot rendezvous between a suspended login and whatever surface
answers the prompt.  The login side awaits :meth:`MultifactorChallenge.wait`;
the surface side calls :meth:`submit` with the code or :meth:`cancel`.

Exactly one resolution is accepted.  Later calls are ignored, logged,
and report ``False`` so a double-tapped button cannot corrupt the login.
"""

from __future__ import annotations

import asyncio
from uuid import UUID, uuid4

from accountdesk.exceptions import MultifactorCancelled
from accountdesk.logger import StructuredLogger
from accountdesk.models.session import MultifactorInfo


class MultifactorChallenge:
    """An in-flight second-factor prompt.

    Must be created on the event loop that owns the registry state.

    Parameters
    ----------
    info:
        Challenge details from the login collaborator, shown to the user.
    logger:
        Structured logger for resolution events.
    """

    def __init__(self, info: MultifactorInfo, logger: StructuredLogger) -> None:
        self.id: UUID = uuid4()
        self.info: MultifactorInfo = info
        self._logger: StructuredLogger = logger
        self._answer: asyncio.Future[str] = asyncio.get_running_loop().create_future()

    @property
    def is_resolved(self) -> bool:
        return self._answer.done()

    def submit(self, code: str) -> bool:
        """Answer the challenge with *code*, passed to the login as given.

        Returns ``False`` (and changes nothing) if already resolved.
        """
        if self._answer.done():
            self._logger.warning(
                "Multifactor challenge %s already resolved; ignoring code.", self.id,
            )
            return False
        self._answer.set_result(code)
        self._logger.info("Multifactor challenge %s answered.", self.id)
        return True

    def cancel(self) -> bool:
        """Dismiss the challenge; the waiting login fails with ``MultifactorCancelled``.

        Returns ``False`` (and changes nothing) if already resolved.
        """
        if self._answer.done():
            self._logger.warning(
                "Multifactor challenge %s already resolved; ignoring cancel.", self.id,
            )
            return False
        self._answer.set_exception(MultifactorCancelled())
        self._logger.info("Multifactor challenge %s cancelled.", self.id)
        return True

    async def wait(self) -> str:
        """Suspend until the challenge is resolved and return the code.

        Raises
        ------
        MultifactorCancelled
            If the challenge was cancelled.
        """
        return await self._answer

    def __repr__(self) -> str:
        state = "resolved" if self.is_resolved else "pending"
        return f"MultifactorChallenge(id={self.id}, method={self.info.method}, {state})"
