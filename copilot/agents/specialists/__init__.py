"""Specialist agents invoked by the decision router."""
