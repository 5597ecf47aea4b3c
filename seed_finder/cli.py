#!/usr/bin/env python3
"""
Seed Finder CLI
===============

Usage examples:
    seed-finder --level-id 122149930 --start-seed 0 --max-seeds 200000 --step 1
    seed-finder --start-seed 0 --max-seeds 200000 --workers 4
    python -m seed_finder --num-checks 20 --kill-probability 0.4 --output out.txt

Exit codes:
    0    all seeds tested
    1    configuration error
    2    output file error
    3    partial result (a worker failed)
    130  cancelled
"""

import argparse
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from .config import ENGINES, MAX_CHECKS, MAX_SEEDS, MAX_WORKERS, ConfigurationError, SearchSettings
from .model_policy import resolve_model
from .models import SimulationModel
from .partition import make_request
from .scheduler import ScanCoordinator
from .sink import SinkError

logger = logging.getLogger("seed_finder")

EXIT_CONFIG_ERROR = 1
EXIT_SINK_ERROR = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seed-finder",
        description="Brute-force a 32-bit seed range for seeds that survive every check",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Limits:
  --max-seeds       at most {MAX_SEEDS:,}
  --num-checks      at most {MAX_CHECKS}
  --workers         at most {MAX_WORKERS} (0 = auto)

Config file format (JSON, every key optional):
{{
  "start_seed": 0,
  "max_seeds": 200000,
  "stride": 1,
  "workers": 0,
  "engine": "numpy",
  "output": "winning_seeds.txt",
  "num_checks": 35,
  "kill_probability": 0.5,
  "kill_rule": "below"
}}
        """,
    )
    parser.add_argument("--level-id", help="Level to fetch metadata for (derives the model)")
    parser.add_argument("--start-seed", type=int, help="First seed (wraps modulo 2^32)")
    parser.add_argument("--max-seeds", type=int, help="Number of seeds to test")
    parser.add_argument("--step", type=int, dest="stride", help="Distance between tested seeds")
    parser.add_argument("--workers", type=int, help="Worker processes, 0 = auto")
    parser.add_argument("--engine", choices=ENGINES, help="Evaluation engine")
    parser.add_argument("--num-checks", type=int, help="Override the model's check count")
    parser.add_argument("--kill-probability", type=float, help="Override the model's kill probability")
    parser.add_argument("--kill-rule", choices=("below", "above"),
                        help="below: draw < p kills; above: draw >= 1-p kills")
    parser.add_argument("--progress-interval", type=int, help="Seeds per worker progress report")
    parser.add_argument("--output", help="Winner file path")
    parser.add_argument("--data-dir", help="Where fetched level payloads are saved")
    parser.add_argument("--config", help="JSON settings file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def load_settings(args: argparse.Namespace) -> SearchSettings:
    """File, then environment, then explicit flags."""
    settings = SearchSettings.from_file(args.config) if args.config else SearchSettings.build()
    settings = settings.with_env_overrides()
    return settings.merged({
        "level_id": args.level_id,
        "start_seed": args.start_seed,
        "max_seeds": args.max_seeds,
        "stride": args.stride,
        "workers": args.workers,
        "engine": args.engine,
        "num_checks": args.num_checks,
        "kill_probability": args.kill_probability,
        "kill_rule": args.kill_rule,
        "progress_interval": args.progress_interval,
        "output": args.output,
        "data_dir": args.data_dir,
    })


def apply_model_overrides(model: SimulationModel, settings: SearchSettings) -> SimulationModel:
    data = model.model_dump()
    if settings.num_checks is not None:
        data["num_checks"] = settings.num_checks
        data["note"] = "user override"
    if settings.kill_probability is not None:
        data["kill_probability"] = settings.kill_probability
        data["note"] = "user override"
    data["kill_rule"] = settings.kill_rule
    try:
        return SimulationModel(**data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = load_settings(args)
        request = make_request(settings.start_seed, settings.max_seeds, settings.stride)
        logger.info(
            f"Seed finder start. startSeed={request.start_seed}, maxSeeds={request.count}, "
            f"step={request.stride}, levelId={settings.level_id or '(none)'}"
        )
        model = apply_model_overrides(resolve_model(settings.level_id, settings.data_dir), settings)
        logger.info(f"Simulation model: {model.describe()}")

        coordinator = ScanCoordinator(
            request,
            model,
            settings.output,
            workers=settings.workers,
            engine=settings.engine,
            progress_interval=settings.progress_interval,
            level_id=settings.level_id,
        )
        result = coordinator.run()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except SinkError as e:
        logger.error(f"Output error: {e}")
        return EXIT_SINK_ERROR
    except KeyboardInterrupt:
        logger.warning("Aborted by user")
        return EXIT_CANCELLED

    if result.diagnostics:
        logger.warning(f"{result.diagnostics} seed(s) could not be evaluated; see warnings above")
    if not result.success:
        logger.warning(f"Incomplete scan (exit {result.exit_code}): {result.output_path}")
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
