from .fallback import FallbackExhausted, first_success

__all__ = [
    "FallbackExhausted",
    "first_success",
]
