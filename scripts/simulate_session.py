#!/usr/bin/env python3
"""
Run one simulated proctoring session and print its summary.

Drives the controller manually (no ticker thread), so the run finishes
instantly regardless of the tick interval.

Usage:
    python scripts/simulate_session.py --ticks 120 --profile wired --surveillance
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys

# Allow running from repo root or scripts/ directory
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from smartproctor.config import SessionConfig
from smartproctor.ml.profiles import PROFILES
from smartproctor.modules.signal_sampler import SimulatedSampler
from smartproctor.session.controller import SessionController

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("simulate_session")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--ticks", type=int, default=60)
    parser.add_argument("--profile", choices=sorted(PROFILES), default="standard")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--surveillance", action="store_true")
    parser.add_argument("--debounce", action="store_true", help="alert only on condition onset")
    parser.add_argument("--failure-rate", type=float, default=0.0)
    args = parser.parse_args(argv)

    config = SessionConfig(
        profile              = args.profile,
        surveillance_enabled = args.surveillance,
        repeat_alerts        = not args.debounce,
    )
    sampler = SimulatedSampler(
        preset               = args.profile,
        seed                 = args.seed,
        surveillance_enabled = args.surveillance,
        failure_rate         = args.failure_rate,
    )

    with SessionController(sampler, config, run_scheduler=False) as session:
        session.start()
        for _ in range(args.ticks):
            session.tick()
        summary = session.stop()

    print(json.dumps(summary.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
