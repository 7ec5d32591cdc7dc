"""Domain layer: models and ports of the engine."""
