"""Counter store adapters.

The admission engine talks to a shared key/value store through the
interface in ``base``. Redis backs production deployments; the in-memory
store serves tests and single-process local runs.
"""
