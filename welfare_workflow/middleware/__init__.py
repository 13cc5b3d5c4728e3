"""Request-level middleware: logging, timing, identity context and rate limits."""
