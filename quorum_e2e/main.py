#!/usr/bin/env python3
import argparse
import asyncio
import json
import logging
import sys
from functools import partial
from pathlib import Path

from .core.client.http_client import ClusterHttpClient
from .scenarios import ScenarioOrchestrator, get_available_choices, get_scenarios_to_run
from .utils.config_manager import ConfigManager
from .utils.exceptions import ConfigurationError
from .utils.logging import setup_logging
from .utils.mock_cluster import SimulatedCluster

LOG = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Quorum cluster network-fault E2E harness")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--cluster-url", default=None,
                        help="Control plane URL of the cluster under test")
    target.add_argument("--simulate", action="store_true",
                        help="Run against the in-memory simulated cluster")
    parser.add_argument("--scenario", default="all",
                        choices=get_available_choices(),
                        help="Scenario, suite or 'all'")
    parser.add_argument("--config", default=None,
                        help="Path to harness YAML configuration")
    parser.add_argument("--nodes", type=int, default=None,
                        help="Number of nodes to start (overrides config)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed (overrides config)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level")
    parser.add_argument("--log-file", default=None,
                        help="Path to log file")
    parser.add_argument("--output-dir", default="output",
                        help="Output directory for scenario results")
    return parser


async def main(argv=None) -> int:
    """Main execution flow"""
    args = build_parser().parse_args(argv)

    # Setup logging
    setup_logging(args.log_level, args.log_file)

    # Create output directory
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    # 1. Load configuration
    try:
        config = ConfigManager().load(args.config, node_count=args.nodes, seed=args.seed)
    except ConfigurationError as e:
        LOG.error(f"Failed to load configuration: {e}")
        return 2
    LOG.info(f"Harness configuration: {config.to_dict()}")

    # 2. Pick the cluster under test
    if args.simulate:
        client_factory = partial(SimulatedCluster, quorum=config.quorum_threshold)
        target = "simulated cluster"
    else:
        client_factory = partial(ClusterHttpClient, args.cluster_url, index=config.index_name)
        target = args.cluster_url

    # 3. Run scenarios
    names = get_scenarios_to_run(args.scenario)
    LOG.info(f"Running scenarios against {target}: {names}")
    orchestrator = ScenarioOrchestrator(client_factory, config)
    results = await orchestrator.run_all(names)

    # 4. Summary
    total = len(results)
    passed = sum(1 for r in results if r.success)
    failed = total - passed

    LOG.info("=" * 60)
    LOG.info("SCENARIO RESULTS SUMMARY")
    LOG.info("=" * 60)
    LOG.info(f"Total scenarios: {total}")
    LOG.info(f"Passed: {passed}")
    LOG.info(f"Failed: {failed}")
    LOG.info("=" * 60)

    if failed > 0:
        LOG.error("Failed scenarios:")
        for result in results:
            if not result.success:
                LOG.error(f"  {result.scenario_name}: {result.error_type}: {result.error}")

    # 5. Save results
    results_file = output_dir / "scenario_results.json"
    try:
        with open(results_file, 'w') as f:
            json.dump({
                "target": target,
                "seed": config.seed,
                "config": config.to_dict(),
                "total_scenarios": total,
                "passed": passed,
                "failed": failed,
                "results": [r.to_dict() for r in results],
            }, f, indent=2, default=str)
        LOG.info(f"Scenario results saved to: {results_file}")
    except OSError as e:
        LOG.error(f"Failed to save scenario results: {e}")

    return 1 if failed > 0 else 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
