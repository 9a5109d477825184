"""Configuration module for siteforge."""

from siteforge.config.settings import OrchestratorSettings, RetryConfig, load_settings

__all__ = ["OrchestratorSettings", "RetryConfig", "load_settings"]
