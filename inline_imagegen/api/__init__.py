"""Inline image generation adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and CLI interfaces.
- Performs transport-level validation and response shaping.
- Delegates orchestration to `inline_imagegen.core.engine`.
"""
