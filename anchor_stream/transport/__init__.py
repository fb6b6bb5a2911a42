from .base import FrameChannel
from .http_channel import RequestChannel
from .stream_channel import StreamChannel

__all__ = ["FrameChannel", "RequestChannel", "StreamChannel"]
