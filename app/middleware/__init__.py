"""Request-independent middleware (structured logging)."""
