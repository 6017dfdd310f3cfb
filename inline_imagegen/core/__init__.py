"""Core orchestration package.

Composition:
    - `engine`: parse -> resolve -> generate -> persist pipeline.
    - `jobs`: per-instruction job state machine.
    - `ledger`: processing guard / job ledger keyed by message id.
    - `errors`: error taxonomy shared by every layer.

Package import itself is side-effect free.
"""
