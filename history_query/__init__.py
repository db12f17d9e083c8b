"""Configuration for the historical quote query."""
