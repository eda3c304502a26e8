"""Extracted node model and execution results."""
