# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 16 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the control plane.
"""

from core.config.defaults import (
    LeaseDefaults,
    TimeoutDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "LeaseDefaults",
    "TimeoutDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
