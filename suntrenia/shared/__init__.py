"""
Upstream plumbing shared by the adapters and the enricher: per-source
guards, call budgets and the pooled HTTP session (resilience), payload
schema checks and timestamp parsing (validation).
"""
