"""Helpers shared by every tool in the collection."""
