"""Persistence package: log rewriting, artifact storage, existence probes and
message storage."""
