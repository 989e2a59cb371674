from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass

from variantkit.core.exceptions import StaleResultError

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RequestToken:
    target: str
    sequence: int


class RequestGuard:
    """Tracks the newest request per target so superseded results are never applied."""

    def __init__(self) -> None:
        self._latest: dict[str, int] = {}
        self._counter = itertools.count(1)

    def begin(self, target: str) -> RequestToken:
        token = RequestToken(target=target, sequence=next(self._counter))
        self._latest[target] = token.sequence
        return token

    def is_current(self, token: RequestToken) -> bool:
        return self._latest.get(token.target) == token.sequence

    def check(self, token: RequestToken) -> None:
        if not self.is_current(token):
            log.info("Discarding result of superseded request %s for %s", token.sequence, token.target)
            raise StaleResultError(f"Request {token.sequence} for {token.target} was superseded")

    async def run(self, target: str, awaitable):
        """Awaits a request and returns its result only if no newer one started meanwhile."""

        token = self.begin(target)
        result = await awaitable
        self.check(token)
        return result
