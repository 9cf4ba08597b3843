"""Squares pool grid claim and settlement engine."""
