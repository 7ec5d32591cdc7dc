"""Tool registry, role executors, argument fixer and tool call bridge."""
