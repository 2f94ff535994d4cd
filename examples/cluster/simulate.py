#!/usr/bin/env python3
import asyncio
import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from raftsim.config import load_config
from raftsim.core.exceptions import ConfigError
from raftsim.simulation import run_simulation
from raftsim.utils.logging_config import setup_logging


async def run(args):
    """
    Load the configuration, run the scenario and print a summary.

    Args:
        args: Parsed command line arguments.
    """
    config = load_config(args.config, overrides={
        'seed': args.seed,
        'storage_dir': args.storage_dir,
        'log_dir': args.log_dir,
        'time_scale': args.time_scale,
        'remove_node_id': args.remove_node,
    })

    setup_logging(
        log_dir=config.log_dir,
        log_level=logging.DEBUG if args.verbose else logging.INFO,
        enable_json=args.json_logs,
    )

    report = await run_simulation(config)

    print(f"Leader: {report.leader_id}")
    for summary in report.nodes.values():
        print(f"  node {summary.node_id}: role={summary.role} term={summary.term} "
              f"log={summary.log_length} active={summary.active}")


def main():
    """
    Parse command line arguments and run the simulation.
    """
    parser = argparse.ArgumentParser(description='Simulate Raft leader election with failures and joins')
    parser.add_argument('--config', default=os.path.join(os.path.dirname(__file__), 'cluster.json'),
                        help='Path to the simulation configuration file')
    parser.add_argument('--seed', type=int, help='Seed for election timeouts')
    parser.add_argument('--storage-dir', help='Directory for per-node log files')
    parser.add_argument('--log-dir', help='Directory for log output')
    parser.add_argument('--time-scale', type=float, help='Multiplier for every scenario phase')
    parser.add_argument('--remove-node', type=int, help='Node to remove after the join')
    parser.add_argument('--json-logs', action='store_true', help='Also write JSON logs to --log-dir')
    parser.add_argument('--verbose', action='store_true', help='Log heartbeats and vote details')

    args = parser.parse_args()

    try:
        asyncio.run(run(args))
    except ConfigError as e:
        parser.error(str(e))


if __name__ == '__main__':
    main()
