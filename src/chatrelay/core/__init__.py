"""Orchestration primitives: named timeouts, deadlines, retry and stream normalisation."""
