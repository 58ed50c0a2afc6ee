"""Configuration settings for the mortuary custody service."""

import os


def get_postgres_uri():
    """Get PostgreSQL connection URI from environment variables."""
    host = os.environ.get("DB_HOST", "localhost")
    port = 5433 if host == "localhost" else 5432
    password = os.environ.get("DB_PASSWORD", "mortuary_pass")
    user = os.environ.get("DB_USER", "mortuary_user")
    db_name = os.environ.get("DB_NAME", "mortuary_db")
    return f"postgresql://{user}:{password}@{host}:{port}/{db_name}"


def get_redis_host_and_port():
    """Get Redis connection details from environment variables."""
    host = os.environ.get("REDIS_HOST", "localhost")
    port = int(os.environ.get("REDIS_PORT", 6379))
    return dict(host=host, port=port)


def get_notification_channel():
    return os.environ.get("NOTIFICATION_CHANNEL", "mortuary:notifications")


def get_api_url():
    """Get API URL from environment variables."""
    host = os.environ.get("API_HOST", "localhost")
    port = int(os.environ.get("API_PORT", 8000))
    return f"http://{host}:{port}"


def get_hold_source_config():
    """
    Get base URLs of the external hold sources consulted by the release gate.

    A source without a configured URL is treated as unavailable.
    """
    timeout = float(os.environ.get("HOLD_SOURCE_TIMEOUT_SECONDS", 5))
    return dict(
        economic_debt=os.environ.get("ECONOMIC_DEBT_URL"),
        blood_debt=os.environ.get("BLOOD_DEBT_URL"),
        legal_authorization=os.environ.get("LEGAL_HOLD_URL"),
        timeout=timeout,
    )


def get_alert_thresholds():
    """Get alert thresholds for tray permanence, correction SLA and occupancy."""
    return dict(
        tray_warning_hours=float(os.environ.get("TRAY_ALERT_HOURS", 24)),
        tray_critical_hours=float(os.environ.get("TRAY_CRITICAL_HOURS", 48)),
        correction_alert_hours=float(os.environ.get("CORRECTION_ALERT_HOURS", 2)),
        occupancy_alert_percentage=float(os.environ.get("OCCUPANCY_ALERT_PERCENTAGE", 70)),
    )


def get_monitor_intervals():
    """Get polling intervals (seconds) of the alert monitor jobs."""
    return dict(
        tray_seconds=int(os.environ.get("TRAY_MONITOR_INTERVAL_SECONDS", 3600)),
        correction_seconds=int(os.environ.get("CORRECTION_MONITOR_INTERVAL_SECONDS", 900)),
    )
