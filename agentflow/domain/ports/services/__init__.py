"""Service ports."""
