#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import yaml

from app.service import EstimationService
from config_manager import ConfigManager
from errors import EstimationError
from state_store import YamlStateStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kalman state estimation for business metrics")
    parser.add_argument("--config", default="config.yaml", help="YAML file with estimator profiles")
    parser.add_argument("--profile", default=None, help="profile to use instead of the active one")
    parser.add_argument("--state", default="state.yaml", help="YAML file holding metric state")
    parser.add_argument("--user", default="local")
    sub = parser.add_subparsers(dest="command", required=True)

    est = sub.add_parser("estimate", help="fold observations into the metric state")
    est.add_argument("metric")
    est.add_argument("observations", help="YAML list of {value, source, confidence, timestamp}")
    est.add_argument("--horizon", type=int, default=None)

    state = sub.add_parser("state", help="show the stored state and recent history")
    state.add_argument("metric")

    cal = sub.add_parser("calibrate", help="report innovation statistics")
    cal.add_argument("metric")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    args = build_parser().parse_args(argv)

    try:
        manager = ConfigManager(args.config)
        if args.profile:
            manager.set_active_profile(args.profile)
        config = manager.get_active_config()
        level = getattr(logging, config.logging_level.upper(), logging.INFO)
        logging.getLogger().setLevel(level)

        service = EstimationService(YamlStateStore(args.state), config)
        if args.command == "estimate":
            with open(args.observations, "r", encoding="utf-8") as f:
                observations = yaml.safe_load(f) or []
            out = service.estimate(args.user, args.metric, observations, args.horizon).to_dict()
        elif args.command == "state":
            out = service.get_state(args.user, args.metric).to_dict()
        else:
            out = service.calibrate(args.user, args.metric).to_dict()
    except EstimationError as e:
        logging.error(f"{type(e).__name__}: {e} {e.details}")
        return 2
    except (ValueError, OSError, yaml.YAMLError) as e:
        logging.exception(f"Could not run {args.command}: {e}")
        return 1

    yaml.safe_dump(out, sys.stdout, sort_keys=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
