"""Data models for cards and change events."""
