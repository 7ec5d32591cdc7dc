"""Execution loop, model caller, reflector and chain restorer."""
