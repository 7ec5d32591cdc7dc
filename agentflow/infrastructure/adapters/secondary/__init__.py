"""Secondary (driven) adapters."""
