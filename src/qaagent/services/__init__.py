"""Agent engine services layer.

Import services from their modules (``qaagent.services.orchestrator``, ...);
the package itself stays import-light so the tool layer can depend on
``circuit_breaker`` without pulling in the orchestrator.
"""
