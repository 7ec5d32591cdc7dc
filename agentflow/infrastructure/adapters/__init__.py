"""Adapters of the domain ports."""
