"""Status checker job -- records host resources and node health.

Host figures come from psutil; CPU sampling blocks for
``cpu_sample_seconds`` so it runs in a worker thread. Node figures come from
the node's peer API. A node that cannot be reached yields a report without
node status rather than a failed run.

Only the most recent ``max_reports`` reports are kept.
"""

import asyncio
import time

import psutil

from bakerd.config import StatusSettings
from bakerd.exceptions import NodeError
from bakerd.logging import get_logger
from bakerd.models import NodeStatus, ResourceStatus, StatusReport
from bakerd.node.client import NodeClient
from bakerd.storage.store import Store

logger = get_logger(__name__)


class StatusChecker:
    """Periodically stores a StatusReport.

    Args:
        node: Node query client.
        store: Local store.
        settings: Sampling and retention settings.
    """

    name = "status_checker"

    def __init__(self, node: NodeClient, store: Store, settings: StatusSettings) -> None:
        self._node = node
        self._store = store
        self._settings = settings

    async def execute(self) -> None:
        report = StatusReport(
            timestamp_ms=int(time.time() * 1000),
            resources=await self.collect_resources(),
            node=await self.collect_node_status(),
        )

        async with self._store.transaction():
            await self._store.insert_status(report)
            await self._store.garbage_collect_statuses(self._settings.max_reports)

        logger.info(
            "status_recorded",
            cpu=report.resources.avg_cpu_load,
            mem_free=report.resources.mem_free,
            node_reachable=report.node is not None,
            peers=report.node.peer_count if report.node else None,
        )

    async def collect_resources(self) -> ResourceStatus:
        """Sample CPU load, memory and uptime of the host."""
        try:
            cpu = await asyncio.to_thread(psutil.cpu_percent, self._settings.cpu_sample_seconds)
            memory = psutil.virtual_memory()
            uptime = int(time.time() - psutil.boot_time())
        except (psutil.Error, OSError) as e:
            logger.warning("resource_sampling_failed", error=str(e))
            return ResourceStatus()
        return ResourceStatus(
            avg_cpu_load=cpu,
            mem_free=memory.available,
            mem_total=memory.total,
            uptime_secs=uptime,
        )

    async def collect_node_status(self) -> NodeStatus | None:
        """Query the node's identity and peers. None when the node cannot answer."""
        try:
            info = await self._node.get_node_info()
            uptime_ms = await self._node.get_peer_uptime()
            peers = await self._node.get_peer_stats()
        except NodeError as e:
            logger.warning("node_status_unavailable", error_type=type(e).__name__, error=str(e))
            return None
        return NodeStatus(
            node_id=info.node_id,
            baker_id=info.baker_id,
            is_baker_committee=info.is_baker_committee,
            is_finalizer_committee=info.is_finalizer_committee,
            uptime_ms=uptime_ms,
            peer_type=info.peer_type,
            peer_average_latency=peers.avg_latency,
            peer_count=peers.peer_count,
        )
