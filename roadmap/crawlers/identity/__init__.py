"""Identity verification client."""
