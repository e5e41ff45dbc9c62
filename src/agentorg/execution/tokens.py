"""Per-project cancellation tokens.

Every remote stage execution runs under a CancellationToken. The
CancellationArena keeps at most one live token per project:

- ``issue()`` cancels the project's previous token (if any) and replaces it.
- ``cancel()`` cancels the live token without removing it.
- ``release()`` removes a token once its execution has finished, but only
  if it is still the live one, so a superseded execution never clears its
  successor's token.

Cancellation is cooperative: holders observe ``cancelled`` or await
``wait()`` and unwind themselves.
"""

import asyncio
import logging
from typing import Dict, Iterator, Optional


logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation signal for one execution.

    Attributes:
        project_id: The project whose execution this token guards.
        reason: Why the token was cancelled, once it has been.
    """

    def __init__(self, project_id: str):
        self.project_id = project_id
        self.reason: Optional[str] = None
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Signal cancellation.

        Returns:
            True if this call cancelled the token, False if it already was.
        """
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> str:
        """Wait until the token is cancelled and return the reason."""
        await self._event.wait()
        return self.reason or "cancelled"

    def __repr__(self) -> str:
        state = f"cancelled:{self.reason}" if self.cancelled else "live"
        return f"CancellationToken(project_id={self.project_id!r}, {state})"


class CancellationArena:
    """Registry enforcing one live cancellation token per project.

    Example:
        >>> arena = CancellationArena()
        >>> first = arena.issue("p1")
        >>> second = arena.issue("p1")
        >>> first.cancelled, second.cancelled
        (True, False)
    """

    def __init__(self) -> None:
        self._tokens: Dict[str, CancellationToken] = {}

    def issue(self, project_id: str) -> CancellationToken:
        """Create the project's live token, superseding any previous one."""
        previous = self._tokens.get(project_id)
        if previous is not None and previous.cancel("superseded"):
            logger.info(
                "Superseded in-flight execution",
                extra={"project_id": project_id},
            )
        token = CancellationToken(project_id)
        self._tokens[project_id] = token
        return token

    def cancel(self, project_id: str, reason: str = "cancelled") -> bool:
        """Cancel the project's live token.

        Returns:
            True if a live token was cancelled by this call.
        """
        token = self._tokens.get(project_id)
        if token is None:
            return False
        return token.cancel(reason)

    def release(self, project_id: str, token: CancellationToken) -> bool:
        """Remove ``token`` if it is still the project's live token."""
        if self._tokens.get(project_id) is token:
            del self._tokens[project_id]
            return True
        return False

    def get(self, project_id: str) -> Optional[CancellationToken]:
        return self._tokens.get(project_id)

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._tokens))
