from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from vi.core.config import load_config
from vi.features.bootstrap.service import ReplayResult, replay_batches
from vi.features.scoring.service import ScoringService
from vi.features.scoring.types import ScoreResult, ScoringRules, rules_from_config
from vi.features.signals.schema import parse_signal_bundle


def replay(config_path: str, batches_path: str, *, spacing_s: float = 1.0) -> ReplayResult:
    cfg = load_config(config_path)
    with open(batches_path, encoding="utf-8") as fh:
        return replay_batches(cfg, fh, spacing_s=spacing_s)


def score(batch_path: str, *, previous: int = 0, config_path: str | None = None) -> ScoreResult:
    """
    Score one batch file. The file holds a signal bundle, or a wire body whose
    `signals` field holds one.
    """
    data: Any = json.loads(Path(batch_path).read_text(encoding="utf-8"))
    if isinstance(data, dict) and "signals" in data:
        data = data["signals"]
        if isinstance(data, str):
            data = json.loads(data)

    rules = rules_from_config(load_config(config_path).scoring) if config_path else ScoringRules()
    return ScoringService(rules).score(previous, parse_signal_bundle(data))
