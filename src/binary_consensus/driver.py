# src/binary_consensus/driver.py
"""
Round Driver - scheduling loop for a node's consensus rounds

start() arms one asyncio task that waits round_delay, runs a round and
repeats until the node decides or is killed. stop() kills the node; the
loop notices on its next check and exits without further broadcasts.
"""

import asyncio
import logging
from typing import Optional

from .engine import ConsensusEngine

logger = logging.getLogger("consensus.driver")


class RoundDriver:
    """Drives a ConsensusEngine through successive rounds"""

    def __init__(self, engine: ConsensusEngine, round_delay: Optional[float] = None):
        self.engine = engine
        self.round_delay = engine.config.round_delay if round_delay is None else round_delay
        self._task: Optional[asyncio.Task] = None
        self.rounds_run = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """
        Arm the round loop.

        No-op when the node is faulty, killed, already decided or already
        running. A one-node network decides immediately instead.

        Returns:
            True if this call started consensus (or decided a single node)
        """
        engine = self.engine
        if not engine.can_run:
            logger.debug(f"Node {engine.node_id} start ignored (phase={engine.phase.value})")
            return False

        if engine.thresholds.single_node:
            return engine.finalize_single_node()

        if self.running:
            logger.debug(f"Node {engine.node_id} round loop already running")
            return False

        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run_loop(), name=f"round-driver-{engine.node_id}")
        logger.info(f"Node {engine.node_id} consensus started")
        return True

    def stop(self):
        """Kill the node. Safe to call any number of times."""
        self.engine.kill()

    async def _run_loop(self):
        engine = self.engine
        try:
            while engine.can_run:
                await asyncio.sleep(self.round_delay)
                if not engine.can_run:
                    break
                await engine.run_round()
                self.rounds_run += 1
        except asyncio.CancelledError:
            logger.debug(f"Node {engine.node_id} round loop cancelled")
            raise
        except Exception:
            logger.exception(f"Node {engine.node_id} round loop crashed at round {engine.state.k}")
            raise

        logger.info(
            f"Node {engine.node_id} round loop finished: phase={engine.phase.value}, "
            f"k={engine.state.k}, rounds={self.rounds_run}"
        )

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the round loop to finish.

        Returns:
            True if the loop finished within timeout (or was never started)
        """
        if self._task is None:
            return True
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def shutdown(self):
        """Kill the node and cancel the round loop task"""
        self.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
