"""ToolLink portal client: session lifecycle, RBAC permission table and access gate."""

__version__ = "0.1.0"
