"""Background scan stages."""
