"""TaskHub Core: multi-tenant project management service."""

__version__ = "1.0.0"
