"""
Registry Module.

In-memory registries of collections, topics and index pages, plus the
persisted JSON configuration they are loaded from.
"""
