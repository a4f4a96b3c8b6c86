"""Helpers preloaded into every Python subprocess an example spawns."""
