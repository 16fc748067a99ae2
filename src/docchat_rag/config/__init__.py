"""docchat_rag.config

Configuration subsystem for docchat-rag.

This package provides structured access to configuration loaded from YAML
files and the logging set-up shared by the API and scripts.

Modules
-------
global_config
    Configuration loader, cached section accessors and ``configure_logging``.
"""
from .global_config import GlobalConfig, configure_logging

__all__ = ["GlobalConfig", "configure_logging"]
