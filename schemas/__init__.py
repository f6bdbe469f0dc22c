"""CSV schemas."""
