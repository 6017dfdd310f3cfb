"""Image generation adapter package.

Scope:
    Provides the two protocol-family clients (bitmap request, multimodal
    content), their shared HTTP transport, configuration, and the dispatch
    service the engine calls.

Non-goals:
    - No model-catalog listing.
    - No artifact persistence (see `inline_imagegen.persistence`).
"""
