"""Dashboard configuration."""

import os


class Config:
    """Base configuration."""

    # Flask
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-change-in-production")
    DEBUG = os.environ.get("FLASK_DEBUG", "false").lower() == "true"
    TESTING = False

    # Dashboard
    DASHBOARD_API_KEY = os.environ.get("DASHBOARD_API_KEY", "")
    STATION_CODE = os.environ.get("STATION_CODE", "NDLS")

    # Alert Store
    ALERT_DB_PATH = os.environ.get(
        "ALERT_DB_PATH",
        os.path.expanduser("~/.railrakshak/alerts.db")
    )

    # Escalation (display only; the sweepers own the actual timing)
    ESCALATION_GRACE_SECONDS = int(os.environ.get("ESCALATION_GRACE_SECONDS", "120"))

    # Pagination
    ALERTS_PER_PAGE = int(os.environ.get("ALERTS_PER_PAGE", "100"))


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DASHBOARD_API_KEY = ""


def get_config():
    """Get configuration based on environment."""
    env = os.environ.get("FLASK_ENV", "development")
    if env == "production":
        return ProductionConfig()
    return DevelopmentConfig()
