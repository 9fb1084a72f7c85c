"""Vectorpool command-line interface."""
