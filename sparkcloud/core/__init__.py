"""Event bus and payload helpers."""
