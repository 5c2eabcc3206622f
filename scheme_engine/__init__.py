"""Scheme Eligibility Engine.

Deterministic eligibility matching over a versioned scheme corpus, kept in
sync with a remote scheme authority through hash-checked incremental deltas.
"""

__version__ = "1.0.0"
