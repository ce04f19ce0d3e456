"""Routing, entity resolution, specialists and synthesis."""
