"""Configuration subsystem for certdesk.

Public API::

    from certdesk.config import get_config, CertdeskConfig

    # At startup (CLI / WSGI entry only):
    CertdeskConfig(config_file="config.yaml", schema_file="bundled")

    # Everywhere else:
    cfg = get_config()
    limit = cfg.settings.retry_queue.max_retries
"""

from certdesk.config.certdesk_config import (
    CertdeskConfig,
    ConfigValidationError,
    get_config,
)
from certdesk.config.settings import (
    AuditLogSettings,
    BounceMonitorSettings,
    BulkSettings,
    CertdeskSettings,
    DatabaseSettings,
    GenerationSettings,
    HttpGeneratorSettings,
    LoggingSettings,
    MetricsSettings,
    NotificationSettings,
    RetryQueueSettings,
    ServerSettings,
    SmtpSettings,
    WorkerSettings,
    build_settings,
)

__all__ = [
    "AuditLogSettings",
    "BounceMonitorSettings",
    "BulkSettings",
    "CertdeskConfig",
    "CertdeskSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "GenerationSettings",
    "HttpGeneratorSettings",
    "LoggingSettings",
    "MetricsSettings",
    "NotificationSettings",
    "RetryQueueSettings",
    "ServerSettings",
    "SmtpSettings",
    "WorkerSettings",
    "build_settings",
    "get_config",
]
