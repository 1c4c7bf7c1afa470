from fabric_client.config.loader import LoggingSettings, Settings, get_settings

__all__ = ["LoggingSettings", "Settings", "get_settings"]
