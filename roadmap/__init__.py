"""Community project roadmap registry."""
