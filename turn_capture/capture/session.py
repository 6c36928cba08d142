"""Wire the capture paths from config: sink, correlator, interceptor, DOM observer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..core.correlator import TurnCorrelator
from ..core.store import BlobStore
from ..core.writer import LogWriter
from ..types import TurnCaptureConfig
from .interceptor import TransportInterceptor
from .sink import BackgroundSink, HttpLogSink, WriterLogSink

if TYPE_CHECKING:
    from .dom import DomObserver

logger = logging.getLogger(__name__)


@dataclass
class CaptureSession:
    """Everything one page needs to log turns."""
    correlator: TurnCorrelator
    sink: BackgroundSink
    interceptor: TransportInterceptor
    dom: DomObserver | None = None

    def close(self) -> None:
        """Uninstall the interceptor and drain the sink. DOM teardown is async: ``await dom.stop()`` first."""
        self.interceptor.uninstall()
        self.sink.wait()
        self.sink.close()


def build_capture(config: TurnCaptureConfig, store: BlobStore | None = None) -> CaptureSession:
    """Build a capture session from ``config.capture``.

    With *store*, turns are written in-process through a LogWriter; otherwise
    they are POSTed to ``capture.endpoint``. The interceptor is built but not
    installed. ``dom`` is None when playwright is not installed.
    """
    capture = config.capture
    if store is not None:
        sink: BackgroundSink = WriterLogSink(LogWriter(store))
    else:
        sink = HttpLogSink(capture.endpoint, capture.user_agent)

    correlator = TurnCorrelator(
        sink, page_path=capture.page_path, user_agent=capture.user_agent,
    )
    interceptor = TransportInterceptor(correlator, capture.exclude_patterns)

    try:
        from .dom import DomObserver
    except ImportError:
        logger.info("playwright not installed; DOM capture unavailable (pip install turn-capture[dom])")
        dom = None
    else:
        dom = DomObserver(correlator, capture)

    return CaptureSession(correlator=correlator, sink=sink, interceptor=interceptor, dom=dom)
