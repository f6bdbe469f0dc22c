"""HTTP API for the bundle board."""
