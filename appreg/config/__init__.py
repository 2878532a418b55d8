"""Configuration module for appreg."""
from .settings import AZURE_ENVIRONMENTS, AppConfig, load_settings, resolve_environment

__all__ = ["AZURE_ENVIRONMENTS", "AppConfig", "load_settings", "resolve_environment"]
