"""Application layer.

Wires the core job machinery to a concrete backend and exposes the
consumer-facing engine API.

Rule of thumb:
UI / CLI -> application.engine -> core (jobs, cache, events, remote) -> backend port
"""
