"""Shared runtime components for the Parley backend."""
