"""
Content pipeline stages for the Perdia engine.

Submodules are imported directly (``from src.agents.quality import ...``);
nothing is re-exported here so that vendor clients can import prompt
constants from individual stages without pulling in the orchestrator.
"""
