"""Inline image generation for conversational text.

Architectural role:
    Finds image-generation instructions embedded in chat messages, generates
    the images through a configured backend, and rewrites each message so an
    instruction is never dispatched again once resolved.

Package split:
    - `parsing`: instruction grammars and tolerant payload decoding.
    - `view`: rendered view projection and target resolution.
    - `image`: provider configuration and protocol clients.
    - `persistence`: log writer, artifact stores, existence probes, message store.
    - `core`: job state machine, processing guard and the orchestration engine.
    - `api`: HTTP and CLI adapters.
"""

__version__ = "0.3.0"
