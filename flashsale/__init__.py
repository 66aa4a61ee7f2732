"""Flash-sale service with per-route rate limiting, reserved stock and queued settlement."""

__version__ = "0.1.0"