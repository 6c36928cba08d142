"""In-page capture paths. ``capture.dom`` needs the ``dom`` extra (playwright)."""

from .interceptor import InterceptorHandle, ObservedSocket, TransportInterceptor
from .session import CaptureSession, build_capture
from .sink import BackgroundSink, HttpLogSink, WriterLogSink
from .sse import StreamDecoder, decode_event_stream

__all__ = [
    "TransportInterceptor",
    "InterceptorHandle",
    "ObservedSocket",
    "StreamDecoder",
    "decode_event_stream",
    "BackgroundSink",
    "HttpLogSink",
    "WriterLogSink",
    "CaptureSession",
    "build_capture",
]
