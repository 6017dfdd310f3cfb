"""Instruction parsing package.

Module split:
    - `models`: immutable instruction records and tag syntax.
    - `quoting`: entity/quote normalization and tolerant JSON decoding.
    - `instruction_parser`: attribute-embedded and legacy bracket grammars.
"""
