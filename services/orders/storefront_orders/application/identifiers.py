import secrets
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import IdentifierExhausted

# 32 symbols; 0/O and 1/I are left out so numbers survive being read aloud
ORDER_NUMBER_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TOKEN_LENGTH = 4
DEFAULT_MAX_ATTEMPTS = 5


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def random_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(length))


class OrderNumberGenerator:
    """Builds PREFIX-YYYYMMDD-XXXX order numbers.

    The date part is read from the clock when a candidate is built and is
    never recomputed afterwards. The random suffix is the only secret in a
    public tracking link.
    """

    def __init__(
        self,
        prefix: str = "TF",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = _utc_now,
        token_source: Callable[[], str] = random_token,
    ):
        self.prefix = prefix
        self.max_attempts = max_attempts
        self.clock = clock
        self.token_source = token_source

    def candidate(self, when: Optional[datetime] = None) -> str:
        when = when or self.clock()
        return f"{self.prefix}-{when:%Y%m%d}-{self.token_source()}"

    def generate(self, exists: Callable[[str], bool]) -> str:
        """Return a number for which ``exists`` is false.

        Raises IdentifierExhausted when every attempt collides.
        """
        when = self.clock()
        for _ in range(self.max_attempts):
            number = self.candidate(when)
            if not exists(number):
                return number
        raise IdentifierExhausted(self.max_attempts)
