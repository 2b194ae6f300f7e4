"""Descriptors, aggregation, quality checks and the identity match index."""
