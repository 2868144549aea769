from __future__ import annotations

import argparse
import json
import sys

from vi.app.runner import replay, score


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="vi")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_replay = sub.add_parser("replay", help="Replay JSONL ingestion bodies through the gateway")
    p_replay.add_argument("--config", default="config/engine.yaml")
    p_replay.add_argument("--batches", required=True, help="JSONL file, one wire body per line")
    p_replay.add_argument("--spacing", type=float, default=1.0, help="seconds between bodies")

    p_score = sub.add_parser("score", help="Score a single signal batch")
    p_score.add_argument("--batch", required=True, help="JSON signal bundle or wire body")
    p_score.add_argument("--previous", type=int, default=0, help="previous session score")
    p_score.add_argument("--config", default=None, help="optional config for scoring rules")

    args = parser.parse_args(argv)

    if args.cmd == "replay":
        result = replay(args.config, args.batches, spacing_s=args.spacing)
        # minimal stdout signal
        print(
            f"run_id={result.run_id} duckdb={result.duckdb_path} accepted={result.accepted} "
            f"rejected={result.rejected} ui_payloads={result.ui_payloads}"
        )
        return 0 if result.rejected == 0 else 2

    if args.cmd == "score":
        res = score(args.batch, previous=args.previous, config_path=args.config)
        print(
            json.dumps(
                {
                    "score": res.score,
                    "intent_category": res.category.value,
                    "suggested_action": res.suggested_action,
                }
            )
        )
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
