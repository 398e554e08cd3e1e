"""Device ownership and remote operations."""
