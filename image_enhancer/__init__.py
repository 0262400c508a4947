"""Remote image enhancement client: submit, poll, fetch, hand back the result."""

__version__ = "1.0.0"
