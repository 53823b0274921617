"""Local artifact storage.

Scope:
    Persists generated files and debug snapshots under the assets directory.
"""
