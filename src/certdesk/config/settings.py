"""Frozen settings dataclasses, one per config section.

Defaults live in the ``_build_*`` functions below; the schema only
validates shape.  Consumers receive the section they need, e.g.
``settings.retry_queue`` for the retry processor.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerSettings:
    """Listener and gunicorn options."""

    external_url: str
    bind: str
    port: int
    workers: int
    worker_class: str
    timeout: int
    graceful_timeout: int
    keepalive: int
    max_requests: int
    max_requests_jitter: int


def _build_server(data: dict | None) -> ServerSettings:
    d = data or {}
    return ServerSettings(
        external_url=d["external_url"],
        bind=d.get("bind", "0.0.0.0"),  # noqa: S104
        port=d.get("port", 8080),
        workers=d.get("workers", 4),
        worker_class=d.get("worker_class", "sync"),
        timeout=d.get("timeout", 30),
        graceful_timeout=d.get("graceful_timeout", 30),
        keepalive=d.get("keepalive", 2),
        max_requests=d.get("max_requests", 0),
        max_requests_jitter=d.get("max_requests_jitter", 0),
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """PostgreSQL connection pool."""

    host: str
    port: int
    database: str
    user: str
    password: str
    sslmode: str
    min_connections: int
    max_connections: int
    connection_timeout: float
    auto_setup: bool


def _build_database(data: dict | None) -> DatabaseSettings:
    d = data or {}
    return DatabaseSettings(
        host=d.get("host", "localhost"),
        port=d.get("port", 5432),
        database=d["database"],
        user=d["user"],
        password=d.get("password", ""),
        sslmode=d.get("sslmode", "prefer"),
        min_connections=d.get("min_connections", 2),
        max_connections=d.get("max_connections", 10),
        connection_timeout=d.get("connection_timeout", 10.0),
        auto_setup=d.get("auto_setup", False),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Audit trail output (rotating JSON-lines file)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "json"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", False),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 104857600),
            backup_count=a.get("backup_count", 10),
        ),
    )


# ---------------------------------------------------------------------------
# SMTP
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SmtpSettings:
    """Outbound mail transport settings."""

    enabled: bool
    host: str
    port: int
    username: str
    password: str
    use_tls: bool
    from_address: str
    templates_path: str | None
    timeout_seconds: int


def _build_smtp(data: dict | None) -> SmtpSettings:
    d = data or {}
    return SmtpSettings(
        enabled=d.get("enabled", False),
        host=d.get("host", ""),
        port=d.get("port", 587),
        username=d.get("username", ""),
        password=d.get("password", ""),
        use_tls=d.get("use_tls", True),
        from_address=d.get("from_address", ""),
        templates_path=d.get("templates_path"),
        timeout_seconds=d.get("timeout_seconds", 30),
    )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotificationSettings:
    enabled: bool
    portal_url: str
    skip_retry_on_bounce: bool


def _build_notifications(data: dict | None, external_url: str) -> NotificationSettings:
    d = data or {}
    return NotificationSettings(
        enabled=d.get("enabled", True),
        portal_url=(d.get("portal_url") or external_url).rstrip("/"),
        skip_retry_on_bounce=d.get("skip_retry_on_bounce", False),
    )


# ---------------------------------------------------------------------------
# Background workers (shared shape)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkerSettings:
    """Interval trigger for one in-process periodic job."""

    enabled: bool
    interval_seconds: int


def _build_worker(data: dict | None, default_interval: int) -> WorkerSettings:
    d = data or {}
    return WorkerSettings(
        enabled=d.get("enabled", True),
        interval_seconds=d.get("interval_seconds", default_interval),
    )


# ---------------------------------------------------------------------------
# Retry queue
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryQueueSettings:
    """Delivery retry policy.

    The k-th retry (``retry_count = k - 1`` on the failed entry) is
    scheduled ``backoff_base_seconds * backoff_multiplier ** (k - 1)``
    after the failure.
    """

    max_retries: int
    backoff_base_seconds: int
    backoff_multiplier: float
    batch_size: int
    stale_seconds: int
    worker: WorkerSettings


def _build_retry_queue(data: dict | None) -> RetryQueueSettings:
    d = data or {}
    return RetryQueueSettings(
        max_retries=d.get("max_retries", 3),
        backoff_base_seconds=d.get("backoff_base_seconds", 1800),
        backoff_multiplier=d.get("backoff_multiplier", 2.0),
        batch_size=d.get("batch_size", 50),
        stale_seconds=d.get("stale_seconds", 900),
        worker=_build_worker(d.get("worker"), 300),
    )


# ---------------------------------------------------------------------------
# Bounce monitor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BounceMonitorSettings:
    enabled: bool
    window_hours: int
    min_sample_size: int
    threshold_percent: float
    critical_percent: float
    dedup_hours: int
    worker: WorkerSettings


def _build_bounce_monitor(data: dict | None) -> BounceMonitorSettings:
    d = data or {}
    return BounceMonitorSettings(
        enabled=d.get("enabled", True),
        window_hours=d.get("window_hours", 24),
        min_sample_size=d.get("min_sample_size", 10),
        threshold_percent=d.get("threshold_percent", 10.0),
        critical_percent=d.get("critical_percent", 20.0),
        dedup_hours=d.get("dedup_hours", 24),
        worker=_build_worker(d.get("worker"), 3600),
    )


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpGeneratorSettings:
    """Remote document-rendering endpoint."""

    url: str
    auth_header: str
    auth_value: str
    timeout_seconds: int
    ca_cert_path: str | None


@dataclass(frozen=True)
class GenerationSettings:
    backend: str
    timeout_seconds: int
    max_workers: int
    stale_seconds: int
    http: HttpGeneratorSettings
    worker: WorkerSettings


def _build_generation(data: dict | None) -> GenerationSettings:
    d = data or {}
    h = d.get("http") or {}
    return GenerationSettings(
        backend=d.get("backend", "http"),
        timeout_seconds=d.get("timeout_seconds", 60),
        max_workers=d.get("max_workers", 4),
        stale_seconds=d.get("stale_seconds", 900),
        http=HttpGeneratorSettings(
            url=h.get("url", ""),
            auth_header=h.get("auth_header", "Authorization"),
            auth_value=h.get("auth_value", ""),
            timeout_seconds=h.get("timeout_seconds", 30),
            ca_cert_path=h.get("ca_cert_path"),
        ),
        worker=_build_worker(d.get("worker"), 600),
    )


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BulkSettings:
    chunk_size: int
    max_items: int


def _build_bulk(data: dict | None) -> BulkSettings:
    d = data or {}
    return BulkSettings(
        chunk_size=d.get("chunk_size", 25),
        max_items=d.get("max_items", 5000),
    )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricsSettings:
    enabled: bool
    path: str


def _build_metrics(data: dict | None) -> MetricsSettings:
    d = data or {}
    return MetricsSettings(
        enabled=d.get("enabled", True),
        path=d.get("path", "/metrics"),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertdeskSettings:
    server: ServerSettings
    database: DatabaseSettings
    logging: LoggingSettings
    smtp: SmtpSettings
    notifications: NotificationSettings
    retry_queue: RetryQueueSettings
    bounce_monitor: BounceMonitorSettings
    generation: GenerationSettings
    bulk: BulkSettings
    metrics: MetricsSettings


def build_settings(data: dict) -> CertdeskSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`CertdeskConfig` initialisation after
    schema validation and environment-variable resolution.
    """
    server = _build_server(data.get("server"))
    return CertdeskSettings(
        server=server,
        database=_build_database(data.get("database")),
        logging=_build_logging(data.get("logging")),
        smtp=_build_smtp(data.get("smtp")),
        notifications=_build_notifications(data.get("notifications"), server.external_url),
        retry_queue=_build_retry_queue(data.get("retry_queue")),
        bounce_monitor=_build_bounce_monitor(data.get("bounce_monitor")),
        generation=_build_generation(data.get("generation")),
        bulk=_build_bulk(data.get("bulk")),
        metrics=_build_metrics(data.get("metrics")),
    )
