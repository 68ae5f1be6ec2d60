from rich import box
from rich.console import Console
from rich.table import Table

from portprobe.result_aggregator import PortState, open_ports, reachable_hosts, summarize

_STATE_STYLES = {
    PortState.OPEN: "bold green",
    PortState.CLOSED: "red",
    PortState.TIMEOUT: "dim",
}


def compress_ports(ports):
    """
    Collapses a list of ports into range notation.
    [22, 80, 81, 82, 443] -> "22,80-82,443"
    """
    ports = sorted(set(ports))
    if not ports:
        return ""
    parts = []
    start = previous = ports[0]
    for port in ports[1:]:
        if port == previous + 1:
            previous = port
            continue
        parts.append(str(start) if start == previous else f"{start}-{previous}")
        start = previous = port
    parts.append(str(start) if start == previous else f"{start}-{previous}")
    return ",".join(parts)


def build_summary_table(summary, hostnames=None, show_offline=False):
    hostnames = hostnames or {}
    show_names = any(hostnames.values())

    table = Table(title="Scan results", box=box.SIMPLE_HEAVY)
    table.add_column("Host")
    if show_names:
        table.add_column("Hostname")
    table.add_column("Open", justify="right", style="green")
    table.add_column("Closed", justify="right", style="red")
    table.add_column("Timeout", justify="right", style="dim")
    table.add_column("Open ports")

    for address, host_result in summary.items():
        counts = summarize(host_result)
        # Hosts where every probe timed out are treated as offline
        if not counts.is_reachable and not show_offline:
            continue
        row = [str(address)]
        if show_names:
            row.append(hostnames.get(address) or "")
        row += [
            str(counts.open),
            str(counts.closed),
            str(counts.timeout),
            compress_ports(open_ports(host_result)) or "-",
        ]
        table.add_row(*row)
    return table


def build_host_table(address, host_result, hostname=None):
    title = str(address) if not hostname else f"{address} ({hostname})"
    table = Table(title=title, box=box.MINIMAL)
    table.add_column("Port", justify="right")
    table.add_column("State")
    for port, state in sorted(host_result.items()):
        table.add_row(str(port), f"[{_STATE_STYLES[state]}]{state.value}[/]")
    return table


def print_report(summary, hostnames=None, show_offline=False, verbose=False, console=None):
    """Renders the finished scan to the console."""
    console = console or Console()
    hostnames = hostnames or {}

    if not len(summary):
        console.print("[yellow]Nothing was scanned.[/]")
        return

    table = build_summary_table(summary, hostnames, show_offline)
    if table.row_count:
        console.print(table)
    else:
        console.print("[yellow]No responding hosts found.[/]")

    if verbose:
        for address, host_result in summary.items():
            if show_offline or summarize(host_result).is_reachable:
                console.print(build_host_table(address, host_result, hostnames.get(address)))

    reachable = len(reachable_hosts(summary))
    console.print(
        f"{reachable} of {len(summary)} hosts responded, "
        f"{summary.probes_completed} probes completed."
    )
