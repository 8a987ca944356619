"""Small helpers shared across codeweave."""
