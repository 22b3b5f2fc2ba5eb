"""Generation orchestrator service."""
