"""Sub-agent handlers, their factory and the planning agents."""
