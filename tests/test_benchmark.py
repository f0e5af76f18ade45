import pytest

from minirpc.benchmark import (
    BenchmarkConfig,
    BenchmarkService,
    format_report,
    main,
    parse_args,
    run_benchmark,
    summarize,
)
from minirpc.types import ProtocolType, SerializationType


def test_service_add():
    assert BenchmarkService().add(2, 3) == 5


def test_service_process_string():
    assert BenchmarkService().process_string("abc") == "Processed: abc"


def test_service_noop_returns_none():
    assert BenchmarkService().noop() is None


def test_fibonacci_small_values():
    service = BenchmarkService()
    assert service.fibonacci(0) == 0
    assert service.fibonacci(1) == 1
    assert service.fibonacci(10) == 55


def test_fibonacci_recurrence():
    service = BenchmarkService()
    for n in range(0, 20):
        assert service.fibonacci(n + 2) == service.fibonacci(n + 1) + service.fibonacci(n)


def test_parse_args_defaults():
    config = parse_args([])
    assert config == BenchmarkConfig()
    assert config.protocol is ProtocolType.TCP
    assert config.serialization is SerializationType.JSON
    assert config.num_threads == 1
    assert config.requests_per_thread == 1000
    assert config.server_port == 8082
    assert config.test_method == "add"
    assert config.verbose is False


def test_parse_args_values():
    config = parse_args(
        ["--protocol", "http", "--serialization", "msgpack", "--threads", "4",
         "--requests", "50", "--method", "fibonacci", "--port", "9000", "--verbose"]
    )
    assert config.protocol is ProtocolType.HTTP
    assert config.serialization is SerializationType.MESSAGEPACK
    assert config.num_threads == 4
    assert config.requests_per_thread == 50
    assert config.test_method == "fibonacci"
    assert config.server_port == 9000
    assert config.verbose is True


def test_parse_args_ignores_unknown_names_and_options():
    config = parse_args(["--protocol", "carrier-pigeon", "--serialization", "xml", "--bogus"])
    assert config.protocol is ProtocolType.TCP
    assert config.serialization is SerializationType.JSON


def test_parse_args_help_exits_zero(capsys):
    with pytest.raises(SystemExit) as info:
        parse_args(["--help"])
    assert info.value.code == 0
    assert "--threads" in capsys.readouterr().out


def test_summarize_empty_is_none():
    assert summarize([], BenchmarkConfig(), 0, 5, 100.0) is None


def test_summarize_values():
    config = BenchmarkConfig(num_threads=1, requests_per_thread=4)
    report = summarize([4.0, 1.0, 3.0, 2.0], config, 4, 0, 2000.0)
    assert report.min_latency == 1.0
    assert report.max_latency == 4.0
    assert report.p50 == 3.0
    assert report.avg_latency == pytest.approx((4.0 + 1.0 + 3.0 + 2.0) / 4)
    assert report.total_requests == 4
    assert report.completed == 4
    assert report.qps == pytest.approx(2.0)
    assert report.success_rate == pytest.approx(100.0)


def test_summarize_percentiles_ordered():
    values = [float(v) for v in range(200, 0, -1)]
    report = summarize(values, BenchmarkConfig(requests_per_thread=200), 200, 0, 1000.0)
    assert report.min_latency <= report.p50 <= report.p95 <= report.p99 <= report.max_latency
    assert report.p99 in values


def test_format_report_mentions_configuration():
    config = BenchmarkConfig(requests_per_thread=2, test_method="noop")
    report = summarize([1.0, 2.0], config, 2, 0, 10.0)
    text = format_report(report)
    assert "noop" in text
    assert "QPS" in text
    assert "TCP" in text
    assert "JSON" in text
    assert "=" * 60 in text


@pytest.mark.parametrize("method", ["add", "processString", "noop", "fibonacci"])
def test_run_benchmark_all_methods(method):
    config = BenchmarkConfig(
        num_threads=2, requests_per_thread=5, server_port=0, test_method=method
    )
    report = run_benchmark(config)
    assert report.completed == config.num_threads * config.requests_per_thread
    assert report.failed == 0
    assert report.total_requests == config.num_threads * config.requests_per_thread


def test_run_benchmark_unknown_method_has_no_report():
    config = BenchmarkConfig(requests_per_thread=3, server_port=0, test_method="missing")
    assert run_benchmark(config) is None


def test_run_benchmark_unsupported_protocol_raises():
    config = BenchmarkConfig(protocol=ProtocolType.UDP, server_port=0)
    with pytest.raises(ValueError):
        run_benchmark(config)


def test_main_runs(capsys):
    assert main(["--port", "0", "--requests", "3"]) == 0
    assert "QPS" in capsys.readouterr().out


def test_main_unsupported_protocol_fails():
    assert main(["--protocol", "http", "--port", "0"]) == -1