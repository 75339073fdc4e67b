import subprocess
from types import SimpleNamespace

import httpx

from app.services import diagnostics
from app.services.diagnostics import GitReport
from app.services.diagnostics import HealthReport
from app.services.diagnostics import fetch_health
from app.services.diagnostics import format_report
from app.services.diagnostics import git_metadata


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_health_with_version_and_timestamp():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/health"
        return httpx.Response(200, json={"status": "ok", "version": "1.4.2", "timestamp": 1717243200000})

    report = fetch_health("https://export.example.com/", client=_client(handler))

    assert report.reachable is True
    assert report.status_code == 200
    assert report.version == "1.4.2"
    assert report.timestamp.isoformat() == "2024-06-01T12:00:00+00:00"


def test_health_missing_fields_are_unavailable():
    report = fetch_health("https://export.example.com", client=_client(lambda r: httpx.Response(200, json={"status": "ok"})))

    assert report.reachable is True
    assert report.version is None
    assert report.timestamp is None
    assert "version: unavailable" in format_report(report, GitReport(error="no git"))


def test_health_non_json_body():
    report = fetch_health("https://export.example.com", client=_client(lambda r: httpx.Response(200, text="OK")))
    assert report.error == "health body is not JSON"


def test_health_server_error_is_not_reachable():
    report = fetch_health("https://export.example.com", client=_client(lambda r: httpx.Response(503, json={})))
    assert report.reachable is False
    assert report.status_code == 503


def test_health_connection_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    report = fetch_health("https://export.example.com", client=_client(handler))
    assert report.reachable is False
    assert "connection refused" in report.error


def test_git_metadata(monkeypatch, tmp_path):
    outputs = {
        "log": "abc123\x1fFix export link expiry\x1f2024-06-01 10:00:00",
        "status": "",
    }

    def fake_run(args, **kwargs):
        return SimpleNamespace(stdout=outputs[args[1]] + "\n")

    monkeypatch.setattr(diagnostics.subprocess, "run", fake_run)
    report = git_metadata(tmp_path)

    assert report.commit == "abc123"
    assert report.subject == "Fix export link expiry"
    assert report.committed_at == "2024-06-01 10:00:00"
    assert report.clean is True


def test_git_metadata_dirty_tree(monkeypatch, tmp_path):
    def fake_run(args, **kwargs):
        out = "abc\x1fs\x1fd" if args[1] == "log" else " M app/main.py"
        return SimpleNamespace(stdout=out)

    monkeypatch.setattr(diagnostics.subprocess, "run", fake_run)
    assert git_metadata(tmp_path).clean is False


def test_git_metadata_without_git(monkeypatch, tmp_path):
    def fake_run(args, **kwargs):
        raise subprocess.CalledProcessError(128, args)

    monkeypatch.setattr(diagnostics.subprocess, "run", fake_run)
    report = git_metadata(tmp_path)
    assert report.error
    assert "git metadata unavailable" in format_report(HealthReport(reachable=False, error="down"), report)


def test_format_report_full():
    health = fetch_health(
        "https://x", client=_client(lambda r: httpx.Response(200, json={"version": "2.0.0", "timestamp": 0}))
    )
    text = format_report(health, GitReport(commit="abc", subject="msg", committed_at="2024-01-01", clean=False))
    assert "service up (HTTP 200)" in text
    assert "version: 2.0.0" in text
    assert "timestamp: 1970-01-01T00:00:00+00:00" in text
    assert "uncommitted changes present" in text
