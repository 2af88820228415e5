"""Service configuration"""

from ems_auth.config.settings import ProviderConfig, Settings, get_settings

__all__ = ["ProviderConfig", "Settings", "get_settings"]
