#!/usr/bin/env python3
"""
Consensus Network Runner

Spins up N nodes (HTTP listeners, or in-memory with --in-memory), starts
consensus, polls node states until every healthy node decides or the
timeout elapses, then prints a summary.

Exit codes: 0 all healthy nodes agreed, 1 timeout, 2 disagreement.
"""

import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import configure_logging, settings
from src.cluster import LocalCluster, launch_network

logger = logging.getLogger("consensus.runner")


def parse_values(raw: Optional[str], count: int, seed: Optional[int]) -> List[int]:
    """Initial values from "0,1,1" or random when omitted"""
    if raw:
        values = [int(item) for item in raw.split(",") if item.strip()]
        if len(values) != count:
            raise SystemExit(f"--values has {len(values)} entries, expected {count}")
        return values
    rng = random.Random(seed)
    return [rng.randint(0, 1) for _ in range(count)]


def parse_faulty(raw: Optional[str], faulty_count: int, count: int) -> List[int]:
    """Faulty node ids from "0,3" or the last --faulty ids when omitted"""
    if raw:
        return sorted({int(item) for item in raw.split(",") if item.strip()})
    return list(range(count - faulty_count, count))


def print_summary(states: List[Dict[str, Any]]):
    print(f"{'node':>4}  {'killed':>6}  {'x':>4}  {'decided':>7}  {'k':>4}")
    print("-" * 34)
    for node_id, state in enumerate(states):
        print(
            f"{node_id:>4}  {str(state['killed']):>6}  {str(state['x']):>4}  "
            f"{str(state['decided']):>7}  {str(state['k']):>4}"
        )


def verdict(states: List[Dict[str, Any]], finished: bool) -> int:
    decided = {state["x"] for state in states if state["decided"]}
    if len(decided) > 1:
        print(f"DISAGREEMENT: decided values {sorted(decided)}")
        return 2
    if not finished:
        print("TIMEOUT: not every healthy node decided")
        return 1
    print(f"AGREEMENT on {decided.pop() if decided else 'nothing'}")
    return 0


async def run_in_memory(values: List[int], faulty: List[int], timeout: float) -> int:
    async with LocalCluster(values, faulty) as cluster:
        cluster.start_all()
        finished = await cluster.wait_for_decisions(timeout=timeout)
        states = [state.to_dict() for state in cluster.states()]
        cluster.stop_all()

    print_summary(states)
    return verdict(states, finished)


async def run_http(values: List[int], faulty: List[int], timeout: float, base_port: int) -> int:
    network = await launch_network(values, faulty, base_port=base_port)
    try:
        await network.start_consensus()
        finished = await network.wait_for_decisions(timeout=timeout)
        states = await network.get_states()
        await network.stop_consensus()
    finally:
        await network.shutdown()

    print_summary(states)
    return verdict(states, finished)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run a binary consensus network")
    parser.add_argument("--nodes", type=int, default=5, help="Number of nodes (N)")
    parser.add_argument("--faulty", type=int, default=0, help="Number of faulty nodes (F)")
    parser.add_argument("--faulty-ids", type=str, default=None, help="Faulty node ids, e.g. 0,3")
    parser.add_argument("--values", type=str, default=None, help="Initial values, e.g. 0,1,1,0,1")
    parser.add_argument("--seed", type=int, default=None, help="Seed for random initial values")
    parser.add_argument("--timeout", type=float, default=10.0, help="Seconds to wait for decisions")
    parser.add_argument("--base-port", type=int, default=settings.BASE_NODE_PORT)
    parser.add_argument("--in-memory", action="store_true", help="Skip HTTP, use in-process delivery")
    parser.add_argument("--log-level", type=str, default=None)
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    values = parse_values(args.values, args.nodes, args.seed)
    faulty = parse_faulty(args.faulty_ids, args.faulty, args.nodes)
    logger.info(f"Running network: n={args.nodes}, faulty={faulty}, values={values}")

    if args.in_memory:
        return asyncio.run(run_in_memory(values, faulty, args.timeout))
    return asyncio.run(run_http(values, faulty, args.timeout, args.base_port))


if __name__ == "__main__":
    sys.exit(main())
