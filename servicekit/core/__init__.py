"""Service lifecycle, middleware and shutdown coordination."""
