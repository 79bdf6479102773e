# ============================================================================
# VERSION - CLUSTER CONTROL PLANE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# ============================================================================
"""
Version information for the cluster control plane backend.

This is the single source of truth for the application version.
Updated manually for each release. The git commit is stamped at build
time through CP_GIT_COMMIT and is what gets persisted as provisionedBy.
"""
import os

# Version format: major.minor.patch.build
__version__ = "0.3.0.1"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-16"
GIT_COMMIT = os.environ.get("CP_GIT_COMMIT", "unknown")

EPOCH = 1
CODENAME = "Cluster Lifecycle"
