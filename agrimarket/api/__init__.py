"""HTTP adapters for the lifecycle core."""
