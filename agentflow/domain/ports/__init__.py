"""
Domain Ports - interfaces of the collaborators the engine depends on.

Storage, model client, prompt renderer, tool executors, summarizer and log
sinks are supplied by the host; the engine only depends on these contracts.
"""
