from . import notifications, realtime

__all__ = ["notifications", "realtime"]
