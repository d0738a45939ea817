"""Activity feed client."""
