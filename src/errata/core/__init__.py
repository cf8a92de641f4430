"""Configuration, clock and logging infrastructure."""
