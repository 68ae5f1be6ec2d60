import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from portprobe import config
from portprobe.async_scanner import resolve_hostnames, scan
from portprobe.network_spec import NetworkParseError, expand_hosts, expand_port_list
from portprobe.report import print_report
from portprobe.result_aggregator import reachable_hosts

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def _positive_int(text):
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return value


def build_cli_parser():
    parser = argparse.ArgumentParser(
        prog="portprobe",
        description="Checks which TCP ports accept connections on a host or CIDR block.",
        epilog="Example: portprobe 192.168.1.0/24 22,80,443,8000-8100",
    )
    parser.add_argument("host", help="IPv4 address or CIDR block, e.g. 192.168.1.1 or 10.0.0.0/24")
    parser.add_argument("ports", help="comma separated ports and ranges, e.g. 22,80,110-120; '-' means 1-65535")
    parser.add_argument("-t", "--timeout-ms", type=_positive_int, default=config.DEFAULT_TIMEOUT_MS,
                        help="connection timeout per probe in milliseconds (default: %(default)s)")
    parser.add_argument("-c", "--concurrency", type=_positive_int, default=config.DEFAULT_CONCURRENCY,
                        help="maximum simultaneous connection attempts (default: %(default)s)")
    parser.add_argument("--resolve", action="store_true",
                        help="look up hostnames of responding hosts")
    parser.add_argument("--show-offline", action="store_true",
                        help="also list hosts where every probe timed out")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="print the state of every probed port")
    parser.add_argument("--log-level", default=config.LOG_LEVEL,
                        choices=config.LOG_LEVELS, type=str.upper,
                        help="logging level (default: %(default)s)")
    return parser


async def main(args, console):
    # 1. Parse targets before touching the network
    hosts = expand_hosts(args.host)
    ports = expand_port_list(args.ports)
    timeout = args.timeout_ms / 1000

    console.print(
        f"Scanning {len(hosts)} host(s) x {len(ports)} port(s) "
        f"with up to {args.concurrency} concurrent probes..."
    )

    # 2. Scan
    summary = await scan(hosts, ports, timeout, args.concurrency)

    # 3. Optional reverse DNS for the hosts that will be shown
    hostnames = {}
    if args.resolve:
        if args.show_offline:
            addresses = list(summary)
        else:
            addresses = [address for address, _ in reachable_hosts(summary)]
        hostnames = await resolve_hostnames(addresses)

    # 4. Report
    print_report(
        summary,
        hostnames=hostnames,
        show_offline=args.show_offline,
        verbose=args.verbose,
        console=console,
    )
    return summary


def setup_logging(level):
    # Log records go to stderr so they never mix into the report tables
    handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, markup=False)
    logging.basicConfig(level=level, handlers=[handler], format="%(message)s")


def run(argv=None):
    parser = build_cli_parser()
    args = parser.parse_args(argv)
    # argparse does not check a default taken from PORTPROBE_LOG_LEVEL against choices
    if args.log_level not in config.LOG_LEVELS:
        parser.error(f"invalid log level {args.log_level!r}, choose from {', '.join(config.LOG_LEVELS)}")
    setup_logging(args.log_level)
    console = Console()

    try:
        asyncio.run(main(args, console))
    except NetworkParseError as e:
        console.print(f"[red]Invalid target specification:[/] {e}")
        return EXIT_USAGE
    except KeyboardInterrupt:
        console.print("[yellow]Scan interrupted.[/]")
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(run())
