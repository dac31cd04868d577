"""FastMCP sub-servers exposing the orchestrator as tools."""
