from booking.api.v1 import appointments, practitioners

__all__ = [
    "appointments",
    "practitioners",
]
