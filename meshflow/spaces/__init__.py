"""Space adapter package.

Scope:
    Provides the Gradio prediction client and one adapter per supported space,
    each encoding its endpoint sequence, parameter ranges and result layout.

Non-goals:
    - No 3D reconstruction logic; that runs on the remote space.
    - No credential management beyond forwarding a bearer token.
"""
