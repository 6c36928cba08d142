"""DOM observer: best-effort turn capture from a rendered chat transcript.

A MutationObserver is injected into the chat widget (inside its shadow root
when it has one) through Playwright. The page-side script reports each
candidate message node, with the role markers of the node and its ancestors,
back to Python through an exposed binding. :class:`TranscriptSubscription`
infers the role, deduplicates, and forwards messages to the turn correlator.
The composer hook reports the input text on Enter or on a send click.

Usage:

    observer = DomObserver(correlator, config.capture)
    subscription = await observer.start(page)
    ...
    await observer.stop()
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from playwright.async_api import ElementHandle, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..core.correlator import TurnCorrelator
from ..types import CaptureConfig, WidgetNotFoundError

logger = logging.getLogger(__name__)

SCAN_SELECTOR = ", ".join([
    "[data-role]", "[data-message-role]",
    '[role="listitem"]', "article", "li",
    '[class*="message"]', '[class*="bubble"]', '[class*="content"]',
    "p",
])
INPUT_SELECTORS = ("textarea", '[contenteditable="true"]', 'input[type="text"]')
SEND_SELECTOR = 'button, [role="button"]'
DOM_META = {"source": "dom", "method": "dom"}

_ASSISTANT_CLASS_RE = re.compile(r"\bassistant\b", re.IGNORECASE)
_USER_CLASS_RE = re.compile(r"\buser\b", re.IGNORECASE)
_ASSISTANT_ARIA_RE = re.compile(r"assistant", re.IGNORECASE)
_USER_ARIA_RE = re.compile(r"user|you", re.IGNORECASE)

# Runs against the host element. Installs a controller at globalThis[args.ctl]
# with rehook() and stop().
_OBSERVER_SCRIPT = r"""
(host, args) => {
    const send = (payload) => {
        const fn = globalThis[args.binding];
        if (!fn) return;
        try {
            fn(payload);
        } catch (err) {
            console.error('turn-capture dispatch failed', err);
        }
    };

    const root = host.shadowRoot || host;
    const transcript =
        root.querySelector('[role="log"]') ||
        root.querySelector('[aria-live]') ||
        root;

    const markers = (el) => {
        const chain = [];
        for (let n = el; n && n.nodeType === 1; n = n.parentElement) {
            chain.push({
                data_role: n.getAttribute('data-role') || '',
                message_role: n.getAttribute('data-message-role') || '',
                class_name: n.getAttribute('class') || '',
                aria_label: n.getAttribute('aria-label') || '',
                role: n.getAttribute('role') || '',
            });
        }
        return chain;
    };

    const report = (el) => {
        const text = (el.textContent || '').replace(/\s+/g, ' ').trim();
        if (text) send({ type: 'node', text, chain: markers(el) });
    };

    const asContainer = (n) => {
        if (!n) return null;
        if (n.nodeType === 1 || n.nodeType === 11) return n;
        return n.parentElement;
    };

    const scan = (container) => {
        if (!container) return;
        if (container.nodeType === 1 && container.matches(args.scanSelector)) report(container);
        container.querySelectorAll(args.scanSelector).forEach(report);
    };

    const observer = new MutationObserver((mutations) => {
        for (const m of mutations) {
            try {
                m.addedNodes.forEach((n) => scan(asContainer(n)));
                scan(asContainer(m.target));
            } catch (err) {
                console.debug('turn-capture scan failed', err);
            }
        }
    });

    const findInput = () => {
        for (const sel of args.inputSelectors) {
            const el = root.querySelector(sel);
            if (el) return el;
        }
        return null;
    };
    const findSend = () => Array.from(root.querySelectorAll(args.sendSelector)).find((el) =>
        /send|submit/i.test(el.getAttribute('aria-label') || el.getAttribute('title') || el.textContent || '')
    ) || null;
    const controlText = (el) => {
        if (!el) return '';
        if (el.tagName === 'TEXTAREA' || el.tagName === 'INPUT') return el.value || '';
        return el.textContent || '';
    };

    let input = null;
    let button = null;
    const onKey = (ev) => {
        if (ev.key === 'Enter' && !ev.shiftKey) {
            send({ type: 'composer', trigger: 'enter', text: controlText(input) });
        }
    };
    const onClick = () => send({ type: 'composer', trigger: 'click', text: controlText(input) });

    const unhook = () => {
        if (input) input.removeEventListener('keydown', onKey, true);
        if (button) button.removeEventListener('click', onClick, true);
    };
    const rehook = () => {
        const nextInput = findInput();
        const nextButton = findSend();
        if (nextInput === input && nextButton === button) return;
        unhook();
        input = nextInput;
        button = nextButton;
        if (input) input.addEventListener('keydown', onKey, true);
        if (button) button.addEventListener('click', onClick, true);
        send({ type: 'composer_hooked', input: !!input, send: !!button });
    };

    globalThis[args.ctl] = {
        rehook,
        stop: () => {
            observer.disconnect();
            unhook();
            input = null;
            button = null;
        },
    };

    rehook();
    scan(transcript);
    observer.observe(transcript, {
        childList: true, subtree: true, characterData: true, attributes: true,
    });
    return host.shadowRoot ? 'BOUND:shadow' : 'BOUND:host';
}
"""

_REHOOK_SCRIPT = "(_host, ctl) => { const c = globalThis[ctl]; if (c) c.rehook(); return !!c; }"
_STOP_SCRIPT = (
    "(_host, ctl) => { const c = globalThis[ctl]; if (!c) return false; "
    "c.stop(); delete globalThis[ctl]; return true; }"
)


@dataclass
class NodeMarkers:
    """Role-bearing attributes of one element, as reported by the page."""
    data_role: str = ""
    message_role: str = ""
    class_name: str = ""
    aria_label: str = ""
    role: str = ""

    @classmethod
    def from_payload(cls, raw: Any) -> NodeMarkers:
        if not isinstance(raw, dict):
            return cls()
        return cls(**{
            name: str(raw.get(name) or "")
            for name in ("data_role", "message_role", "class_name", "aria_label", "role")
        })


def infer_role(chain: Sequence[NodeMarkers]) -> str:
    """``"user"``, ``"assistant"``, or ``""`` from a node-then-ancestors chain."""
    for m in chain:
        marker = m.data_role or m.message_role
        if marker in ("user", "assistant"):
            return marker

        if _ASSISTANT_CLASS_RE.search(m.class_name):
            return "assistant"
        if _USER_CLASS_RE.search(m.class_name):
            return "user"

        aria = m.aria_label or m.role
        if _ASSISTANT_ARIA_RE.search(aria):
            return "assistant"
        if _USER_ARIA_RE.search(aria):
            return "user"
    return ""


class TranscriptSubscription:
    """Live capture from one widget: page-side observer plus Python-side state."""

    def __init__(
        self,
        host: ElementHandle,
        correlator: TurnCorrelator,
        binding: str,
        *,
        dedup_chars: int = 240,
        poll_interval: float = 1.5,
    ) -> None:
        self.host = host
        self.correlator = correlator
        self.binding = binding
        self.controller = f"{binding}_ctl"
        self.dedup_chars = dedup_chars
        self.poll_interval = poll_interval
        self.seen: set[tuple[str, str]] = set()
        self.last_assistant = ""
        self.composer_input = False
        self.composer_send = False
        self.mode = ""
        self._cleanups: list[Callable[[], None]] = []
        self._poll_task: asyncio.Task | None = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def composer_ready(self) -> bool:
        return self.composer_input and self.composer_send

    async def start(self) -> TranscriptSubscription:
        # Initial-scan reports can arrive before evaluate() returns.
        self._active = True
        try:
            result = await self.host.evaluate(_OBSERVER_SCRIPT, {
                "binding": self.binding,
                "ctl": self.controller,
                "scanSelector": SCAN_SELECTOR,
                "inputSelectors": list(INPUT_SELECTORS),
                "sendSelector": SEND_SELECTOR,
            })
        except BaseException:
            self._active = False
            raise
        self.mode = "shadow root" if result == "BOUND:shadow" else "host"
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_composer())
        return self

    def add_cleanup(self, fn: Callable[[], None]) -> None:
        self._cleanups.append(fn)

    def reset(self) -> None:
        """Forget what was seen (new conversation)."""
        self.seen.clear()
        self.last_assistant = ""

    async def unsubscribe(self) -> None:
        """Disconnect the page observer, drop the composer listeners, stop polling."""
        if not self._active:
            return
        self._active = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        try:
            await self.host.evaluate(_STOP_SCRIPT, self.controller)
        except PlaywrightError:
            logger.debug("Observer teardown failed (page closed?)", exc_info=True)
        for fn in self._cleanups:
            fn()
        self._cleanups = []

    # -- page reports ----------------------------------------------------------

    def handle(self, payload: Any) -> None:
        """Binding callback target. Ignores everything once unsubscribed."""
        if not self._active or not isinstance(payload, dict):
            return
        kind = payload.get("type")
        try:
            if kind == "node":
                self._on_node(payload)
            elif kind == "composer":
                self._capture_composer(str(payload.get("trigger") or ""), str(payload.get("text") or ""))
            elif kind == "composer_hooked":
                self.composer_input = bool(payload.get("input"))
                self.composer_send = bool(payload.get("send"))
                logger.debug(
                    "Composer hooked (input=%s, send=%s)", self.composer_input, self.composer_send,
                )
        except Exception:
            logger.debug("DOM report handling failed", exc_info=True)

    def _on_node(self, payload: dict) -> None:
        text = " ".join(str(payload.get("text") or "").split())
        if not text:
            return
        role = infer_role([NodeMarkers.from_payload(m) for m in payload.get("chain") or []])
        if not role:
            return

        key = (role, text[:self.dedup_chars])
        if key in self.seen:
            return
        self.seen.add(key)

        if role == "user":
            logger.debug("DOM user: %s", text[:120])
            self.correlator.begin(text)
        else:
            if text == self.last_assistant:
                return
            self.last_assistant = text
            logger.debug("DOM assistant: %s", text[:120])
            self.correlator.complete(text, dict(DOM_META))

    def _capture_composer(self, trigger: str, text: str) -> None:
        text = text.strip()
        if text:
            logger.debug("DOM user (%s): %s", trigger, text[:120])
            self.correlator.begin(text)

    async def _poll_composer(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            if self.composer_ready:
                continue
            try:
                await self.host.evaluate(_REHOOK_SCRIPT, self.controller)
            except PlaywrightError:
                logger.debug("Composer re-hook failed", exc_info=True)


class DomObserver:
    """Attaches transcript subscriptions to the chat widget on a page."""

    def __init__(self, correlator: TurnCorrelator, config: CaptureConfig | None = None) -> None:
        self.correlator = correlator
        self.config = config or CaptureConfig()
        self._subscriptions: list[TranscriptSubscription] = []

    async def _find_host(self, page: Page) -> ElementHandle | None:
        selector = self.config.host_selector
        host = await page.query_selector(selector)
        if host is not None:
            return host

        delay = self.config.attach_retry_delay
        logger.info("Widget host %s not ready, waiting up to %.1fs", selector, delay)
        try:
            return await page.wait_for_selector(selector, state="attached", timeout=delay * 1000)
        except PlaywrightTimeoutError:
            return None

    async def attach(self, page: Page) -> TranscriptSubscription:
        selector = self.config.host_selector
        host = await self._find_host(page)
        if host is None:
            raise WidgetNotFoundError(selector, self.config.attach_retry_delay)

        binding = f"turnCaptureDom_{uuid.uuid4().hex}"
        subscription = TranscriptSubscription(
            host,
            self.correlator,
            binding,
            dedup_chars=self.config.dedup_chars,
            poll_interval=self.config.composer_poll_interval,
        )
        await page.expose_binding(binding, lambda source, payload: subscription.handle(payload))
        await subscription.start()
        subscription.add_cleanup(self.correlator.on_thread_change(subscription.reset))
        self._subscriptions.append(subscription)
        logger.info("DOM observer attached to %s (%s)", selector, subscription.mode)
        return subscription

    async def start(self, page: Page) -> TranscriptSubscription | None:
        """Like :meth:`attach`, but failure only logs a warning."""
        try:
            return await self.attach(page)
        except WidgetNotFoundError as exc:
            logger.warning("%s; DOM capture disabled", exc)
        except PlaywrightError as exc:
            logger.warning("DOM observer injection failed: %s; DOM capture disabled", exc)
        return None

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            await subscription.unsubscribe()
        self._subscriptions = []
