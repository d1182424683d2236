"""Business services for the marketplace."""
