"""Built-in maintenance handlers.

WHY
───
The automation toolkit ships a fixed set of housekeeping job types that
operators schedule directly or as recurring jobs. Each handler is
self-contained: it takes its parameters, does the work with the standard
library, and returns a :class:`HandlerResult` with a result payload.

ARCHITECTURE
────────────
::

    Handlers (installed by register_builtin_handlers):
      system_health_check  ─ disk / load thresholds → health Good|Degraded
      backup_database      ─ copy a database file into a backup directory
      cleanup_logs         ─ delete old log files, report files_deleted
      update_software      ─ report the packages an update run would touch
      security_scan        ─ flag world-writable files under given paths
      performance_report   ─ snapshot of cpu / load / disk figures

Related modules:
    registry.py — HandlerRegistry these register into
    executor.py — JobExecutor that resolves handlers by job type
"""

from __future__ import annotations

import os
import shutil
import stat
import time
from datetime import timedelta
from pathlib import Path
from typing import Any

from jobspine.core.logging import get_logger
from jobspine.core.timestamps import utcnow
from jobspine.jobs.registry import HandlerRegistry, HandlerResult, JobContext

logger = get_logger(__name__)


def _load_average() -> tuple[float, float, float] | None:
    try:
        return os.getloadavg()
    except (AttributeError, OSError):
        return None


def system_health_check(params: dict[str, Any], ctx: JobContext) -> HandlerResult:
    """Check free disk space and load against thresholds."""
    path = params.get("path", os.sep)
    min_free_percent = float(params.get("min_free_percent", 10))
    max_load_per_cpu = float(params.get("max_load_per_cpu", 2.0))

    usage = shutil.disk_usage(path)
    free_percent = round(usage.free / usage.total * 100, 2) if usage.total else 0.0
    cpus = os.cpu_count() or 1
    load = _load_average()

    problems: list[str] = []
    if free_percent < min_free_percent:
        problems.append(f"free disk {free_percent}% below {min_free_percent}%")
    if load is not None and load[0] / cpus > max_load_per_cpu:
        problems.append(f"load {load[0]:.2f} above {max_load_per_cpu} per cpu")

    return HandlerResult.ok(
        health="Degraded" if problems else "Good",
        problems=problems,
        disk_free_percent=free_percent,
        load_average=list(load) if load else None,
        cpu_count=cpus,
    )


def backup_database(params: dict[str, Any], ctx: JobContext) -> HandlerResult:
    """Copy ``source`` into ``destination`` with a timestamped name."""
    source = params.get("source")
    if not source:
        return HandlerResult.fail("backup_database requires a 'source' parameter")

    src = Path(source)
    if not src.is_file():
        return HandlerResult.fail(f"Backup source not found: {src}")

    dest_dir = Path(params.get("destination") or src.parent / "backups")
    dest_dir.mkdir(parents=True, exist_ok=True)
    stamp = utcnow().strftime("%Y%m%dT%H%M%SZ")
    target = dest_dir / f"{src.stem}-{stamp}{src.suffix}"
    shutil.copy2(src, target)

    size = target.stat().st_size
    ctx.logger.info("backup.created", source=str(src), target=str(target), size=size)
    return HandlerResult.ok(backup_path=str(target), backup_size=size)


def cleanup_logs(params: dict[str, Any], ctx: JobContext) -> HandlerResult:
    """Delete log files older than ``max_age_days`` under ``log_dir``.

    Without a ``log_dir`` there is nothing to clean and the job reports
    zero files removed.
    """
    log_dir = params.get("log_dir")
    pattern = params.get("pattern", "*.log")
    max_age_days = float(params.get("max_age_days", 30))
    dry_run = bool(params.get("dry_run", False))

    if not log_dir:
        return HandlerResult.ok(files_deleted=0, bytes_freed=0, log_dir=None)

    root = Path(log_dir)
    if not root.is_dir():
        return HandlerResult.fail(f"Log directory not found: {root}")

    cutoff = time.time() - timedelta(days=max_age_days).total_seconds()
    deleted: list[str] = []
    freed = 0
    for path in sorted(root.rglob(pattern)):
        if ctx.cancelled:
            break
        if not path.is_file():
            continue
        info = path.stat()
        if info.st_mtime > cutoff:
            continue
        if not dry_run:
            path.unlink()
        deleted.append(str(path))
        freed += info.st_size

    return HandlerResult.ok(
        files_deleted=len(deleted),
        bytes_freed=freed,
        log_dir=str(root),
        dry_run=dry_run,
        deleted=deleted,
    )


def update_software(params: dict[str, Any], ctx: JobContext) -> HandlerResult:
    """Report the packages an update run covers.

    Package installation itself belongs to the OS integration layer;
    this handler validates the request and reports what it covers.
    """
    packages = params.get("packages") or []
    if isinstance(packages, str):
        packages = [p.strip() for p in packages.split(",") if p.strip()]
    return HandlerResult.ok(packages_updated=len(packages), packages=list(packages))


def security_scan(params: dict[str, Any], ctx: JobContext) -> HandlerResult:
    """Flag world-writable regular files under ``paths``."""
    paths = params.get("paths") or []
    if isinstance(paths, str):
        paths = [paths]

    findings: list[str] = []
    scanned = 0
    for base in paths:
        root = Path(base)
        if not root.exists():
            continue
        candidates = [root] if root.is_file() else root.rglob("*")
        for path in candidates:
            if ctx.cancelled:
                break
            if not path.is_file():
                continue
            scanned += 1
            if path.stat().st_mode & stat.S_IWOTH:
                findings.append(str(path))

    return HandlerResult.ok(threats_found=len(findings), files_scanned=scanned, findings=findings)


def performance_report(params: dict[str, Any], ctx: JobContext) -> HandlerResult:
    """Snapshot basic performance figures."""
    usage = shutil.disk_usage(params.get("path", os.sep))
    load = _load_average()
    return HandlerResult.ok(
        report_generated=True,
        generated_at=utcnow().isoformat(),
        cpu_count=os.cpu_count(),
        load_average=list(load) if load else None,
        disk_total=usage.total,
        disk_used=usage.used,
        disk_free=usage.free,
    )


BUILTIN_HANDLERS = {
    "system_health_check": system_health_check,
    "backup_database": backup_database,
    "cleanup_logs": cleanup_logs,
    "update_software": update_software,
    "security_scan": security_scan,
    "performance_report": performance_report,
}


def register_builtin_handlers(registry: HandlerRegistry) -> HandlerRegistry:
    """Install the built-in handlers into *registry* and return it."""
    for job_type, fn in BUILTIN_HANDLERS.items():
        registry.register(job_type, fn, description=(fn.__doc__ or "").strip().splitlines()[0])
    return registry
