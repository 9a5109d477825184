"""SiteForge - lifecycle orchestration for generated website projects."""

__version__ = "0.1.0"
