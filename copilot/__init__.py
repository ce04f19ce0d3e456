"""Sales copilot turn-processing service."""
