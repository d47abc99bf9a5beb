"""In-place column encryption into internal-crypto-provider envelopes."""

__version__ = "1.0.0"
