"""
Client Progressive Loader — the browser-side fallback cascade.

A displayed media element walks the same cascade as the server:

    optimized URL -> direct first-gateway URL -> alternate gateways
                  -> static placeholder

The cascade is an explicit state machine. ``transition`` is a pure
function over ``LoaderState``; ``ProgressiveMediaLoader`` drives it with
load events from the element and a per-state hard timeout. The server
exposes ``plan_sources`` so a browser implementation can mirror the plan
exactly.

Usage:
    loader = ProgressiveMediaLoader(config, on_loaded=show, on_failed=hide)
    state = loader.set_source("ipfs://Qm.../cover.jpg", mime="image/jpeg")
    # element.src = state.url, then on the element's events:
    loader.load_failed()   # or loader.load_succeeded()
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

from settings import EngineConfig
from uri_classifier import MediaReference, MediaScheme, gateway_reference, gateway_url

logger = logging.getLogger("media-engine.client_loader")

# ---------------------------------------------------------------------------
# Source planning
# ---------------------------------------------------------------------------


class OptimizeOptions(BaseModel):
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    fit: Optional[str] = None
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    format: Optional[str] = None

    def query(self) -> dict[str, str]:
        params = {
            "img-width": self.width,
            "img-height": self.height,
            "img-fit": self.fit,
            "img-quality": self.quality,
            "img-format": self.format,
        }
        return {k: str(v) for k, v in params.items() if v is not None}


class SourcePlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    src: str
    optimized: str
    direct: str
    alternates: tuple[str, ...] = ()
    placeholder: str
    content_addressed: bool = False


def _passes_through_optimizer(src: str, mime: Optional[str]) -> bool:
    """SVG stays vector and GIF keeps its animation."""
    lowered = src.lower()
    if mime in ("image/svg+xml", "image/gif"):
        return True
    return ".svg" in lowered or ".gif" in lowered or lowered.startswith(("data:image/svg+xml", "data:image/gif"))


def direct_url(ref: MediaReference, config: EngineConfig) -> str:
    if not ref.content_addressed:
        return ref.raw
    return gateway_url(config.gateways_for(ref.scheme.value)[0], ref)


def optimized_url(
    ref: MediaReference,
    mime: Optional[str],
    config: EngineConfig,
    options: Optional[OptimizeOptions] = None,
) -> str:
    """Transformed URL from the image optimizer, or the direct URL.

    Only whole-CID IPFS images are transformed. Anything under a path
    inside a CID is served as-is.
    """
    direct = direct_url(ref, config)
    if ref.scheme is not MediaScheme.IPFS or not config.optimizer_base_url:
        return direct
    if _passes_through_optimizer(ref.raw, mime):
        return direct
    if ref.path and ref.path.strip("/"):
        return direct

    params = {}
    if config.optimizer_token:
        params["pinataGatewayToken"] = config.optimizer_token
    params.update((options or OptimizeOptions()).query())
    base = config.optimizer_base_url.rstrip("/")
    query = f"?{urlencode(params)}" if params else ""
    return f"{base}/{ref.cid}{query}"


def plan_sources(
    src: str,
    mime: Optional[str],
    config: EngineConfig,
    options: Optional[OptimizeOptions] = None,
) -> SourcePlan:
    """Every URL the cascade may try for ``src``, in order."""
    ref = gateway_reference(src)
    if ref is None:
        return SourcePlan(src=src or "", optimized="", direct="", placeholder=config.placeholder_url)

    direct = direct_url(ref, config)
    alternates: tuple[str, ...] = ()
    if ref.content_addressed:
        alternates = tuple(gateway_url(base, ref) for base in config.gateways_for(ref.scheme.value)[1:])

    return SourcePlan(
        src=src,
        optimized=optimized_url(ref, mime, config, options),
        direct=direct,
        alternates=alternates,
        placeholder=config.placeholder_url,
        content_addressed=ref.content_addressed,
    )


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class LoaderPhase(str, Enum):
    INIT = "init"
    LOADING_OPTIMIZED = "loading_optimized"
    LOADING_DIRECT = "loading_direct"
    LOADING_ALT_GATEWAY = "loading_alt_gateway"
    LOADING_FALLBACK = "loading_fallback"
    LOADED = "loaded"
    FAILED = "failed"


TERMINAL_PHASES = frozenset({LoaderPhase.LOADED, LoaderPhase.FAILED})


class LoaderEvent(str, Enum):
    START = "start"
    LOAD_OK = "load_ok"
    LOAD_ERROR = "load_error"
    TIMEOUT = "timeout"


class LoaderState(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: LoaderPhase = LoaderPhase.INIT
    url: Optional[str] = None
    alt_index: Optional[int] = None
    timed_out: bool = False

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


def _alternate_or_fallback(index: int, plan: SourcePlan) -> LoaderState:
    if plan.content_addressed and index < len(plan.alternates):
        return LoaderState(phase=LoaderPhase.LOADING_ALT_GATEWAY, url=plan.alternates[index], alt_index=index)
    return LoaderState(phase=LoaderPhase.LOADING_FALLBACK, url=plan.placeholder)


def transition(state: LoaderState, event: LoaderEvent, plan: SourcePlan) -> LoaderState:
    """Next state. Terminal states absorb every event."""
    if state.terminal:
        return state

    if event is LoaderEvent.LOAD_OK:
        return state.model_copy(update={"phase": LoaderPhase.LOADED})
    if event is LoaderEvent.TIMEOUT:
        return state.model_copy(update={"phase": LoaderPhase.LOADED, "timed_out": True})

    if event is LoaderEvent.START:
        if state.phase is not LoaderPhase.INIT:
            return state
        if not plan.optimized:
            return LoaderState(phase=LoaderPhase.LOADING_FALLBACK, url=plan.placeholder)
        return LoaderState(phase=LoaderPhase.LOADING_OPTIMIZED, url=plan.optimized)

    # LOAD_ERROR
    if state.phase is LoaderPhase.LOADING_OPTIMIZED:
        if plan.content_addressed and plan.optimized != plan.direct:
            return LoaderState(phase=LoaderPhase.LOADING_DIRECT, url=plan.direct)
        return _alternate_or_fallback(0, plan)
    if state.phase is LoaderPhase.LOADING_DIRECT:
        return _alternate_or_fallback(0, plan)
    if state.phase is LoaderPhase.LOADING_ALT_GATEWAY:
        return _alternate_or_fallback((state.alt_index or 0) + 1, plan)
    if state.phase is LoaderPhase.LOADING_FALLBACK:
        return LoaderState(phase=LoaderPhase.FAILED, url=state.url)
    return state


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

StateCallback = Callable[[LoaderState], None]


class ProgressiveMediaLoader:
    """Drives ``transition`` for one media element.

    Every loading state gets its own timer of ``config.loader_timeout_s``;
    if no load event arrives in time the element is given up on as
    ``LOADED`` with ``timed_out`` set. ``set_source`` restarts from
    ``INIT`` and cancels any pending timer.
    """

    def __init__(
        self,
        config: EngineConfig,
        on_loaded: Optional[StateCallback] = None,
        on_failed: Optional[StateCallback] = None,
        options: Optional[OptimizeOptions] = None,
    ):
        self.config = config
        self.on_loaded = on_loaded
        self.on_failed = on_failed
        self.options = options
        self.plan: Optional[SourcePlan] = None
        self._state = LoaderState()
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def state(self) -> LoaderState:
        return self._state

    def set_source(self, src: str, mime: Optional[str] = None) -> LoaderState:
        self._cancel_timer()
        self.plan = plan_sources(src, mime, self.config, self.options)
        self._state = LoaderState()
        return self._dispatch(LoaderEvent.START)

    def load_succeeded(self) -> LoaderState:
        return self._dispatch(LoaderEvent.LOAD_OK)

    def load_failed(self) -> LoaderState:
        return self._dispatch(LoaderEvent.LOAD_ERROR)

    def close(self):
        self._cancel_timer()
        self.plan = None

    def _on_timeout(self):
        self._timer = None
        logger.info("Media load timed out in %s: %s", self._state.phase.value, self._state.url)
        self._dispatch(LoaderEvent.TIMEOUT)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _dispatch(self, event: LoaderEvent) -> LoaderState:
        if self.plan is None:
            return self._state
        previous = self._state
        self._state = transition(previous, event, self.plan)
        if self._state == previous:
            return self._state

        self._cancel_timer()
        logger.debug("Loader %s -> %s (%s)", previous.phase.value, self._state.phase.value, event.value)

        if self._state.phase is LoaderPhase.LOADED:
            if self.on_loaded:
                self.on_loaded(self._state)
        elif self._state.phase is LoaderPhase.FAILED:
            if self.on_failed:
                self.on_failed(self._state)
        else:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.config.loader_timeout_s, self._on_timeout)
        return self._state
