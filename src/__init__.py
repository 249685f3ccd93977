"""Adaptive learning core."""
