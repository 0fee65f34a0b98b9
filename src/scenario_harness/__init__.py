"""Scenario-driven quality harness for agentic CLIs."""
