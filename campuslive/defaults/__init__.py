"""Default constants and configuration values for campuslive."""

from .config import DEFAULT_REALTIME_CONFIG, PortalSettings, settings_from_env

__all__ = ["DEFAULT_REALTIME_CONFIG", "PortalSettings", "settings_from_env"]
