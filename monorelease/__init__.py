"""monorelease: release orchestrator for uv workspaces."""

__version__ = "0.1.0"
