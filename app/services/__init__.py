"""Risk engine services: scoring, routing, aggregation, creation, assignment and review."""
