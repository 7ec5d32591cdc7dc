"""Agent chain execution engine.

The public entry points are ``agentflow.infrastructure.agent.provider.FlowProvider``
for task work and ``agentflow.infrastructure.agent.assistant.AssistantProvider``
for the interactive assistant of a flow.
"""
