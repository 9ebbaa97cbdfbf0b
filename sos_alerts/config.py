"""Configuration management for the alert coordination core."""

import os
import socket
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    # Fall back to template for defaults
    template_path = Path(__file__).parent.parent / ".env.template"
    if template_path.exists():
        load_dotenv(template_path)


def default_observer_id() -> str:
    """Identify this process in audit entries and logs."""
    return f"{socket.gethostname()}-{os.getpid()}"


class Config:
    """Application configuration."""

    # Shared store
    ALERT_DB_PATH: str = os.path.expanduser(
        os.getenv("ALERT_DB_PATH", "~/.railrakshak/alerts.db")
    )
    SNAPSHOT_LIMIT: int = int(os.getenv("SNAPSHOT_LIMIT", "500"))

    # Escalation
    ESCALATION_GRACE_SECONDS: int = int(os.getenv("ESCALATION_GRACE_SECONDS", "120"))
    SWEEP_INTERVAL_SECONDS: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", "5"))

    # Subscription
    SUBSCRIPTION_POLL_SECONDS: float = float(os.getenv("SUBSCRIPTION_POLL_SECONDS", "1.0"))
    RESUBSCRIBE_DELAY_SECONDS: float = float(os.getenv("RESUBSCRIBE_DELAY_SECONDS", "2.0"))

    # Identity of this watcher process
    OBSERVER_ID: str = os.getenv("OBSERVER_ID") or default_observer_id()


config = Config()
