"""Shared repository plumbing."""
