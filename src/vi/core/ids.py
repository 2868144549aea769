from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from vi.core.rng import RNG


def canonical_json(obj: Any) -> str:
    # stable serialization for hashing and raw logs
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)


def deterministic_run_id_from_config(cfg_raw: dict[str, Any], length: int = 12) -> str:
    """
    Same YAML content -> same run_id; any config change -> new run_id.
    """
    s = canonical_json(cfg_raw).encode("utf-8")
    return hashlib.sha1(s).hexdigest()[:length]


def hash_client_address(address: str | None) -> str:
    """
    SHA-256 of the client address. Raw addresses are never stored.
    A missing address hashes as 0.0.0.0 so every session carries a hash.
    """
    s = (address or "0.0.0.0").strip().encode("utf-8")
    return hashlib.sha256(s).hexdigest()


def new_session_id(*, now_ms: int, rng: RNG) -> str:
    return f"sess_{int(now_ms)}_{rng.token(13)}"


@dataclass(slots=True)
class IdsService:
    namespace: str
    _counters: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def next_id(self, prefix: str) -> str:
        n = self._counters.get(prefix, 0) + 1
        self._counters[prefix] = n
        return f"{prefix}_{self.namespace}_{n:08d}"
