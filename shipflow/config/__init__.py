"""Configuration loading for shipflow."""

from shipflow.config.settings import ShipflowSettings, load_settings

__all__ = ["ShipflowSettings", "load_settings"]
