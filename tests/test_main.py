from ipaddress import IPv4Address

import pytest

import main
from portprobe.result_aggregator import PortState, ScanSummary


@pytest.fixture
def fake_scan(monkeypatch):
    calls = []

    async def scan(hosts, ports, timeout, concurrency_limit):
        calls.append((list(hosts), ports, timeout, concurrency_limit))
        summary = ScanSummary()
        for host in hosts:
            for port in ports:
                summary.record(host, port, PortState.OPEN if port == 22 else PortState.CLOSED)
        return summary

    monkeypatch.setattr(main, "scan", scan)
    return calls


def test_parser_defaults():
    args = main.build_cli_parser().parse_args(["10.0.0.1", "22"])
    assert args.host == "10.0.0.1"
    assert args.ports == "22"
    assert args.timeout_ms == main.config.DEFAULT_TIMEOUT_MS
    assert args.concurrency == main.config.DEFAULT_CONCURRENCY
    assert not args.resolve


@pytest.mark.parametrize("option", ["--timeout-ms=0", "--concurrency=-1", "--timeout-ms=abc"])
def test_parser_rejects_bad_numbers(option):
    with pytest.raises(SystemExit) as excinfo:
        main.build_cli_parser().parse_args(["10.0.0.1", "22", option])
    assert excinfo.value.code == 2


def test_run_passes_parsed_targets(fake_scan, capsys):
    assert main.run(["10.0.0.0/31", "22,80", "-t", "250", "-c", "7"]) == main.EXIT_OK

    [(hosts, ports, timeout, limit)] = fake_scan
    assert hosts == [IPv4Address("10.0.0.0"), IPv4Address("10.0.0.1")]
    assert ports == [22, 80]
    assert timeout == 0.25
    assert limit == 7
    assert "2 of 2 hosts responded" in capsys.readouterr().out


@pytest.mark.parametrize("host, ports", [("bad/24", "22"), ("10.0.0.1/33", "22"), ("", "22"), ("10.0.0.1", "5..9")])
def test_run_rejects_bad_specification_before_scanning(fake_scan, host, ports, capsys):
    assert main.run([host, ports]) == main.EXIT_USAGE
    assert fake_scan == []
    assert "Invalid target specification" in capsys.readouterr().out


def test_run_resolves_reachable_hosts(fake_scan, monkeypatch, capsys):
    looked_up = []

    async def resolve_hostnames(addresses):
        looked_up.extend(addresses)
        return {address: "box.lan" for address in addresses}

    monkeypatch.setattr(main, "resolve_hostnames", resolve_hostnames)
    assert main.run(["10.0.0.5", "22", "--resolve"]) == main.EXIT_OK
    assert looked_up == [IPv4Address("10.0.0.5")]
    assert "box.lan" in capsys.readouterr().out


def test_run_rejects_bad_log_level_from_environment(fake_scan, monkeypatch, capsys):
    monkeypatch.setattr(main.config, "LOG_LEVEL", "FOO")
    with pytest.raises(SystemExit) as excinfo:
        main.run(["10.0.0.1", "22"])
    assert excinfo.value.code == main.EXIT_USAGE
    assert fake_scan == []
    assert "invalid log level 'FOO'" in capsys.readouterr().err


def test_setup_logging_uses_rich_handler_on_stderr(monkeypatch):
    configured = {}
    monkeypatch.setattr(main.logging, "basicConfig", lambda **kwargs: configured.update(kwargs))

    main.setup_logging("DEBUG")

    [handler] = configured["handlers"]
    assert isinstance(handler, main.RichHandler)
    assert handler.console.stderr
    assert configured["level"] == "DEBUG"
