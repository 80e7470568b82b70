"""
Modularity - Property-Based Testing Suite

Hypothesis-driven tests for dependency resolution and lifecycle ordering
over generated module graphs.
"""
