from __future__ import annotations

import random
import string
from dataclasses import dataclass

_TOKEN_ALPHABET = string.digits + string.ascii_lowercase


@dataclass
class RNG:
    seed: int | None = None

    def __post_init__(self) -> None:
        self._r = random.Random(self.seed)

    def random(self) -> float:
        return self._r.random()

    def token(self, length: int) -> str:
        """Lowercase base-36 token, used for client-side ids."""
        return "".join(self._r.choice(_TOKEN_ALPHABET) for _ in range(length))
