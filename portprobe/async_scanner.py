import asyncio
import logging
import socket
from concurrent.futures import ThreadPoolExecutor
from ipaddress import IPv4Address

from portprobe import config
from portprobe.result_aggregator import PortState, aggregate_results

logger = logging.getLogger(__name__)


async def probe(address, port, timeout):
    """
    Makes one TCP connection attempt to address:port and classifies it.

    OPEN    - the handshake completed within timeout seconds
    CLOSED  - the attempt was refused or failed before the timeout
    TIMEOUT - no answer in time; the pending attempt is cancelled and its
              socket closed

    Never waits longer than timeout and never retries.
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(str(address), port, family=socket.AF_INET),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        # Checked before OSError: on Python 3.11+ TimeoutError is an OSError
        return PortState.TIMEOUT
    except OSError:
        return PortState.CLOSED

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass  # peer reset during close, the port still accepted
    return PortState.OPEN


async def worker(target_queue, results_queue, timeout, prober):
    """
    Takes (address, port) pairs from target_queue, probes them one at a time
    and puts (address, port, state) onto results_queue.
    """
    while True:
        target = await target_queue.get()
        try:
            if target is None:  # shutdown signal
                return
            address, port = target
            state = await prober(address, port, timeout)
            logger.debug("%s:%d -> %s", address, port, state.value)
            await results_queue.put((address, port, state))
        finally:
            target_queue.task_done()


async def _produce_targets(hosts, ports, target_queue, worker_count):
    # The queue is bounded, so the host x port product is never materialized
    if ports:
        for host in hosts:
            address = IPv4Address(host)
            for port in ports:
                await target_queue.put((address, port))
    for _ in range(worker_count):
        await target_queue.put(None)


def _count_targets(hosts, ports):
    try:
        return len(hosts) * len(ports)
    except TypeError:
        return None  # plain iterator, size unknown


async def scan(hosts, ports, timeout, concurrency_limit, *, prober=probe):
    """
    Probes every (host, port) pair of hosts x ports and returns a ScanSummary.

    At most concurrency_limit probes are in flight at any moment: a fixed pool
    of worker tasks pulls targets from a bounded queue, and a single
    aggregator task owns the summary. Returns only once every target has
    produced exactly one outcome.
    """
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be at least 1, got {concurrency_limit}")
    if timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")

    ports = list(ports)
    total = _count_targets(hosts, ports)
    worker_count = concurrency_limit if total is None else max(1, min(concurrency_limit, total))
    queue_size = worker_count * config.QUEUE_FACTOR

    target_queue = asyncio.Queue(maxsize=queue_size)
    results_queue = asyncio.Queue(maxsize=queue_size)

    logger.info(
        "Starting scan of %s targets with %d workers, timeout %.3fs",
        "an unknown number of" if total is None else total,
        worker_count,
        timeout,
    )

    producer = asyncio.create_task(_produce_targets(hosts, ports, target_queue, worker_count))
    workers = [
        asyncio.create_task(worker(target_queue, results_queue, timeout, prober))
        for _ in range(worker_count)
    ]
    aggregator = asyncio.create_task(aggregate_results(results_queue))
    tasks = [producer, *workers, aggregator]

    try:
        await asyncio.gather(producer, *workers)
        # Every worker has exited, so every outcome is already queued
        await results_queue.put(None)
        summary = await aggregator
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    logger.info(
        "Scan finished: %d outcomes for %d hosts",
        summary.probes_completed,
        len(summary),
    )
    return summary


def scan_sync(hosts, ports, timeout, concurrency_limit, *, prober=probe):
    """Runs scan() on a fresh event loop for synchronous callers."""
    return asyncio.run(scan(hosts, ports, timeout, concurrency_limit, prober=prober))


def _consume_result(lookup):
    # A lookup abandoned after its timeout may still fail later
    if not lookup.cancelled():
        lookup.exception()


async def _wait_for_hostname(address, lookup, timeout):
    lookup.add_done_callback(_consume_result)
    try:
        # shield() leaves the thread's future alone when the wait times out
        hostname, _aliases, _addresses = await asyncio.wait_for(asyncio.shield(lookup), timeout=timeout)
    except (asyncio.TimeoutError, OSError, UnicodeError) as exc:
        logger.debug("Reverse lookup of %s failed: %r", address, exc)
        return None
    return hostname or None


async def resolve_hostname(address, timeout=None):
    """
    Best-effort reverse DNS lookup for address.

    Uses run_in_executor so the blocking socket.gethostbyaddr call does not
    stall the event loop. Any lookup failure or timeout gives None.
    """
    if timeout is None:
        timeout = config.RESOLVE_TIMEOUT
    loop = asyncio.get_running_loop()
    lookup = loop.run_in_executor(None, socket.gethostbyaddr, str(address))
    return await _wait_for_hostname(address, lookup, timeout)


async def resolve_hostnames(addresses, timeout=None, limit=None):
    """
    Resolves several addresses, returning {address: hostname or None}.

    At most limit lookups run at once, each on its own thread of a private
    pool. The timeout of a lookup starts once it holds a slot, and the slot
    stays taken until its thread returns, even after the timeout.
    """
    if timeout is None:
        timeout = config.RESOLVE_TIMEOUT
    if limit is None:
        limit = config.RESOLVE_CONCURRENCY
    if limit < 1:
        raise ValueError(f"limit must be at least 1, got {limit}")

    addresses = list(addresses)
    loop = asyncio.get_running_loop()
    slots = asyncio.Semaphore(limit)
    executor = ThreadPoolExecutor(max_workers=limit, thread_name_prefix="portprobe-dns")

    async def resolve_one(address):
        await slots.acquire()
        lookup = loop.run_in_executor(executor, socket.gethostbyaddr, str(address))
        lookup.add_done_callback(lambda _: slots.release())
        return await _wait_for_hostname(address, lookup, timeout)

    try:
        names = await asyncio.gather(*(resolve_one(address) for address in addresses))
    finally:
        # Lookups stuck past their timeout finish in the background
        executor.shutdown(wait=False)
    return dict(zip(addresses, names))
