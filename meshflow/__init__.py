"""Remote image-to-3D generation workflows over hosted inference spaces.

Architectural role:
    Drives a multi-step generation run against one of several interchangeable
    spaces and normalizes the result into a local OBJ/GLB pair.

Package split:
    - `config`: environment-driven space, retry and parameter configuration.
    - `core`: dispatch engine, retry policy, data contracts and errors.
    - `spaces`: prediction client and one adapter per supported space.
    - `storage`: artifact persistence and debug snapshots.
"""
