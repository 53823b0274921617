"""Core orchestration package.

Architectural role:
    Sits between callers and the space adapters: selects the adapter for the
    active space, and provides the retry policy and data contracts every adapter
    relies on.

Composition:
    - `engine`: space detection and dispatch.
    - `retry`: bounded exponential backoff.
    - `params`: permissive parsing and clamping helpers.
    - `types`: request, context and result contracts.
    - `errors`: workflow error taxonomy.

Determinism and side effects:
    Package import itself is side-effect free. Runtime side effects are performed
    by the adapters that `engine` dispatches to.
"""
