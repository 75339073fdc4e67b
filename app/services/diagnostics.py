"""Probes used by the deployment check script.

Health fields are optional on the wire: a missing ``version`` or
``timestamp`` is reported as unavailable rather than treated as an error.
"""

import logging
import subprocess
from datetime import UTC
from datetime import datetime
from pathlib import Path

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

UNAVAILABLE = "unavailable"


class HealthReport(BaseModel):
    reachable: bool
    status_code: int | None = None
    version: str | None = None
    timestamp: datetime | None = None
    error: str | None = None


class GitReport(BaseModel):
    commit: str | None = None
    subject: str | None = None
    committed_at: str | None = None
    clean: bool | None = None
    error: str | None = None


def _parse_timestamp(value: object) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def fetch_health(base_url: str, client: httpx.Client | None = None, timeout: float = 10.0) -> HealthReport:
    url = f"{base_url.rstrip('/')}/health"
    own_client = client is None
    http = client or httpx.Client(timeout=timeout)
    try:
        rsp = http.get(url)
    except httpx.HTTPError as e:
        logger.warning("Health check failed for %s: %s", url, e)
        return HealthReport(reachable=False, error=str(e))
    finally:
        if own_client:
            http.close()

    report = HealthReport(reachable=rsp.is_success, status_code=rsp.status_code)
    try:
        body = rsp.json()
    except ValueError:
        report.error = "health body is not JSON"
        return report
    if isinstance(body, dict):
        version = body.get("version")
        report.version = str(version) if version is not None else None
        report.timestamp = _parse_timestamp(body.get("timestamp"))
    return report


def _git(args: list[str], cwd: Path) -> str:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
        timeout=10,
    ).stdout.strip()


def git_metadata(repo_dir: Path | str = ".") -> GitReport:
    cwd = Path(repo_dir)
    try:
        line = _git(["log", "-1", "--format=%H%x1f%s%x1f%cd", "--date=format:%Y-%m-%d %H:%M:%S"], cwd)
        status = _git(["status", "--porcelain"], cwd)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("Could not read git metadata in %s: %s", cwd, e)
        return GitReport(error=str(e))

    parts = line.split("\x1f")
    if len(parts) != 3:
        return GitReport(error=f"unexpected git log output: {line!r}")
    return GitReport(commit=parts[0], subject=parts[1], committed_at=parts[2], clean=not status)


def format_report(health: HealthReport, git: GitReport) -> str:
    lines = ["== Health =="]
    if health.reachable:
        lines.append(f"service up (HTTP {health.status_code})")
    else:
        lines.append(f"health check failed: {health.error or f'HTTP {health.status_code}'}")
    lines.append(f"version: {health.version or UNAVAILABLE}")
    lines.append(f"timestamp: {health.timestamp.isoformat() if health.timestamp else UNAVAILABLE}")

    lines.append("== Git ==")
    if git.error:
        lines.append(f"git metadata unavailable: {git.error}")
    else:
        lines.append(f"commit: {git.commit} {git.subject}")
        lines.append(f"date: {git.committed_at}")
        lines.append("working tree clean" if git.clean else "uncommitted changes present")
    return "\n".join(lines)
