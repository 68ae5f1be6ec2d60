import logging
from enum import Enum
from typing import NamedTuple

logger = logging.getLogger(__name__)


class PortState(Enum):
    """Outcome of a single TCP connection attempt."""

    OPEN = "open"
    CLOSED = "closed"
    TIMEOUT = "timeout"


class ScanSummary:
    """
    Scan results keyed by host, then by port.

    Host entries are created on the first outcome recorded for that host. When
    a port list contains the same port twice, the later outcome replaces the
    earlier one, while probes_completed still counts both.
    """

    def __init__(self):
        self._hosts = {}
        self.probes_completed = 0

    def record(self, address, port, state):
        self._hosts.setdefault(address, {})[port] = state
        self.probes_completed += 1

    def __getitem__(self, address):
        return self._hosts[address]

    def __contains__(self, address):
        return address in self._hosts

    def __len__(self):
        return len(self._hosts)

    def __iter__(self):
        return iter(sorted(self._hosts))

    def items(self):
        return [(address, self._hosts[address]) for address in self]

    def __repr__(self):
        return f"ScanSummary(hosts={len(self)}, probes_completed={self.probes_completed})"


class HostSummary(NamedTuple):
    open: int
    closed: int
    timeout: int

    @property
    def total(self):
        return self.open + self.closed + self.timeout

    @property
    def is_reachable(self):
        # Both an accepted and a refused connection prove the host answered
        return self.open > 0 or self.closed > 0


def summarize(host_result):
    """Counts open, closed and timed out ports of one host."""
    counts = {state: 0 for state in PortState}
    for state in host_result.values():
        counts[state] += 1
    return HostSummary(counts[PortState.OPEN], counts[PortState.CLOSED], counts[PortState.TIMEOUT])


def open_ports(host_result):
    return sorted(port for port, state in host_result.items() if state is PortState.OPEN)


def reachable_hosts(summary):
    """
    Returns (address, HostSummary) for every host that answered at least once.
    Hosts where every probe timed out are considered offline and left out.
    """
    reachable = []
    for address, host_result in summary.items():
        host_summary = summarize(host_result)
        if host_summary.is_reachable:
            reachable.append((address, host_summary))
    return reachable


def host_summary_to_dict(address, host_result, hostname=None):
    """
    Flattens one host's results into plain data for display or export.
    host_result: {80: PortState.OPEN, 81: PortState.CLOSED}
    """
    counts = summarize(host_result)
    return {
        "ip_address": str(address),
        "hostname": hostname,
        "open": counts.open,
        "closed": counts.closed,
        "timeout": counts.timeout,
        "open_ports": open_ports(host_result),
        "ports": {port: state.value for port, state in sorted(host_result.items())},
    }


async def aggregate_results(results_queue):
    """
    Single writer for the scan summary.

    Takes (address, port, state) triples from results_queue until a None
    sentinel arrives. Probes only ever talk to the queue, so no two completions
    can modify the same host entry at once.
    """
    summary = ScanSummary()
    while True:
        item = await results_queue.get()
        try:
            if item is None:  # end of scan
                break
            address, port, state = item
            summary.record(address, port, state)
        finally:
            results_queue.task_done()

    logger.debug("Aggregated %d outcomes for %d hosts", summary.probes_completed, len(summary))
    return summary
