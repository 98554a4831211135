"""TrustEye: trust-gated content recommendations, publishing and growth campaigns."""

__version__ = "0.1.0"
