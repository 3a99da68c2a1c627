from __future__ import annotations
import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from service_io.config import EngineConfig, ServiceConfig, Transform
from service_io.core.router import Route, Router, as_whitelist, routing_key
from service_io.errors import ConfigurationError, DeliveryError, InputExhausted, ProcessingError
from service_io.interface import maybe_await
from service_io.logging_utils import setup_logging, short
from service_io.message import Message

logger = logging.getLogger(__name__)


@dataclass
class EngineStats:
    received: int = 0
    dropped: int = 0
    unmatched: int = 0
    rejected: int = 0
    processed: int = 0
    responses: int = 0
    service_failures: int = 0
    deliveries: int = 0
    delivery_failures: int = 0
    input_errors: int = 0
    dispatch_errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class _Stopped(Exception):
    pass


class Engine:
    """Pulls messages from every input, routes them to services and fans the
    responses out to every output.

    Configuration (builder calls or a prepared ``EngineConfig``) must be
    complete before ``run()``; afterwards the builder methods raise
    ``ConfigurationError``. Each input gets its own task, so messages from one
    input are dispatched strictly in order while inputs do not wait on each
    other. Failures of inputs, services and outputs are logged and counted in
    ``stats``; only configuration errors make ``run()`` raise.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.router: Optional[Router] = None
        self._stats = EngineStats()
        self._started = False
        self._stopping = False
        self._stop: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []

    # --- builder ---

    def input(self, source: Any) -> 'Engine':
        self._check_not_started()
        self.config.inputs.append(source)
        return self

    def output(self, sink: Any) -> 'Engine':
        self._check_not_started()
        self.config.outputs.append(sink)
        return self

    def add_service(
        self,
        key: str,
        service: Any,
        whitelist: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> 'Engine':
        self._check_not_started()
        self.config.services.append(ServiceConfig(
            key=key,
            service=service,
            whitelist=as_whitelist(whitelist),
            timeout=timeout,
        ))
        return self

    def add_service_for(self, key: str, service: Any, whitelist: Iterable[str]) -> 'Engine':
        """Register a service only the origins in ``whitelist`` may use."""
        return self.add_service(key, service, whitelist=whitelist)

    def add_transform(self, fn: Transform) -> 'Engine':
        self._check_not_started()
        self.config.transforms.append(fn)
        return self

    def map_input(self, fn: Callable[[Message], Message]) -> 'Engine':
        return self.add_transform(fn)

    def filter_input(self, predicate: Callable[[Message], bool]) -> 'Engine':
        def _filter(message: Message) -> Optional[Message]:
            return message if predicate(message) else None

        _filter.__name__ = getattr(predicate, '__name__', 'filter')
        return self.add_transform(_filter)

    def _check_not_started(self) -> None:
        if self._started:
            raise ConfigurationError("Engine is already running, configuration is closed")

    # --- runtime ---

    @property
    def stats(self) -> Dict[str, int]:
        return self._stats.as_dict()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def build_router(self) -> Router:
        router = Router(self.config.duplicate_policy, self.config.unmatched_policy)
        for fn in self.config.transforms:
            router.add_transform(fn)
        for svc in self.config.services:
            router.register(svc.key, svc.service, svc.whitelist, svc.timeout)
        return router

    def _validate(self) -> None:
        cfg = self.config
        if not cfg.inputs:
            raise ConfigurationError("At least one input is required")
        for name in ('service_timeout', 'output_timeout', 'drain_timeout'):
            value = getattr(cfg, name)
            if value is not None and value <= 0:
                raise ConfigurationError(f"{name} must be positive", value=value)
        if cfg.input_error_backoff < 0:
            raise ConfigurationError("input_error_backoff must not be negative")
        if not cfg.outputs:
            logger.warning("No outputs registered, responses will be discarded")

    async def run(self) -> None:
        if self._started:
            raise ConfigurationError("Engine.run() can only be called once")
        self._started = True
        if self.config.log_level:
            setup_logging(self.config.log_level)
        self._validate()
        self.router = self.build_router()

        self._stop = asyncio.Event()
        if self._stopping:
            self._stop.set()

        logger.info(
            f"Engine starting: {len(self.config.inputs)} input(s), "
            f"{len(self.config.outputs)} output(s), services: {', '.join(self.router.routes) or '-'}"
        )
        try:
            await self._attach_services()
            self._tasks = [
                asyncio.ensure_future(self._input_loop(i, source))
                for i, source in enumerate(self.config.inputs)
            ]
            await self._supervise()
        finally:
            pending = [t for t in self._tasks if not t.done()]
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.wait(pending)
            await self._close_components()
            logger.info(f"Engine stopped: {self.stats}")

    def shutdown(self) -> None:
        """Stop fetching; in-flight dispatch is allowed to finish."""
        self._stopping = True
        if self._stop is not None and not self._stop.is_set():
            logger.info("Engine shutdown requested")
            self._stop.set()

    async def _supervise(self) -> None:
        waiter = asyncio.ensure_future(self._stop.wait())
        try:
            while True:
                pending = [t for t in self._tasks if not t.done()]
                if not pending:
                    logger.info("All inputs exhausted")
                    return
                done, _ = await asyncio.wait([*pending, waiter], return_when=asyncio.FIRST_COMPLETED)
                if waiter in done:
                    break
        finally:
            waiter.cancel()
        await self._drain()

    async def _drain(self) -> None:
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=self.config.drain_timeout)
        if still_running:
            logger.warning(f"Drain timeout: cancelling {len(still_running)} task(s) still in flight")
            for t in still_running:
                t.cancel()
            await asyncio.wait(still_running)

    async def _input_loop(self, index: int, source: Any) -> None:
        name = _component_name(source, index)
        logger.debug(f"Input {name} started")
        while not self._stop.is_set():
            try:
                message = await self._next(source)
            except _Stopped:
                break
            except InputExhausted:
                logger.info(f"Input {name} exhausted")
                break
            except Exception as e:
                self._stats.input_errors += 1
                logger.error(f"Input {name} failed: {e}")
                await self._pause(self.config.input_error_backoff)
                continue
            if not isinstance(message, Message):
                self._stats.input_errors += 1
                logger.error(f"Input {name} produced {type(message).__name__}, expected Message")
                continue
            try:
                await self._dispatch(message)
            except Exception as e:
                self._stats.dispatch_errors += 1
                logger.exception(f"Input {name}: dispatching message from '{message.origin}' failed: {e}")
        logger.debug(f"Input {name} stopped")

    async def _next(self, source: Any) -> Message:
        """Wait for the next message or for shutdown, whichever comes first."""
        fetch = asyncio.ensure_future(_fetch(source))
        stop = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait([fetch, stop], return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not fetch.done():
                fetch.cancel()
                await asyncio.wait([fetch])
        if fetch.cancelled():
            raise _Stopped()
        return fetch.result()

    async def _pause(self, seconds: float) -> None:
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _dispatch(self, message: Message) -> None:
        self._stats.received += 1
        route, routed = self.router.resolve(message)
        if route is None:
            if routed is None:
                self._stats.dropped += 1
            elif routing_key(routed) in self.router:
                self._stats.rejected += 1
            else:
                self._stats.unmatched += 1
            return

        response = await self._invoke(route, routed)
        if response is None:
            return
        self._stats.responses += 1
        await self.deliver(response)

    async def _invoke(self, route: Route, message: Message) -> Optional[Message]:
        timeout = route.timeout if route.timeout is not None else self.config.service_timeout
        try:
            response = await asyncio.wait_for(_handle(route.service, message), timeout)
        except asyncio.TimeoutError:
            self._stats.service_failures += 1
            logger.error(f"Service '{route.key}' timed out after {timeout}s (from '{message.origin}')")
            return None
        except ProcessingError as e:
            self._stats.service_failures += 1
            logger.error(f"Service '{route.key}' failed: {e.detail}")
            return None
        except Exception as e:
            self._stats.service_failures += 1
            logger.exception(f"Service '{route.key}' raised {type(e).__name__}: {e}")
            return None

        if response is not None and not isinstance(response, Message):
            self._stats.service_failures += 1
            logger.error(f"Service '{route.key}' returned {type(response).__name__}, expected Message")
            return None
        self._stats.processed += 1
        logger.debug(f"Service '{route.key}' handled message from '{message.origin}': "
                     f"{'reply' if response is not None else 'no reply'}")
        return response

    async def deliver(self, message: Message) -> None:
        """Send ``message`` to every output concurrently and wait for all of them."""
        outputs = list(self.config.outputs)
        if not outputs:
            logger.debug(f"No outputs, discarding response for '{message.origin}'")
            return
        await asyncio.gather(*(self._send(i, sink, message) for i, sink in enumerate(outputs)))

    async def _send(self, index: int, sink: Any, message: Message) -> bool:
        name = _component_name(sink, index)
        try:
            await asyncio.wait_for(maybe_await(sink.send(message)), self.config.output_timeout)
        except asyncio.TimeoutError:
            self._stats.delivery_failures += 1
            logger.error(f"Output {name} timed out delivering to '{message.origin}'")
            return False
        except DeliveryError as e:
            self._stats.delivery_failures += 1
            logger.error(f"Output {name} failed delivering to '{message.origin}': {e.detail}")
            return False
        except Exception as e:
            self._stats.delivery_failures += 1
            logger.exception(f"Output {name} raised {type(e).__name__}: {e}")
            return False
        self._stats.deliveries += 1
        logger.debug(f"Output {name} delivered '{short(message.subject)}' to '{message.origin}'")
        return True

    def _components(self) -> List[Any]:
        seen = set()
        components = []
        candidates = [*self.config.inputs, *self.config.outputs]
        candidates += [svc.service for svc in self.config.services]
        if self.router is not None:
            candidates += [route.service for route in self.router.routes.values()]
        for c in candidates:
            if id(c) not in seen:
                seen.add(id(c))
                components.append(c)
        return components

    async def _attach_services(self) -> None:
        seen = set()
        for route in self.router.routes.values():
            attach = getattr(route.service, 'attach', None)
            if attach is None or id(route.service) in seen:
                continue
            seen.add(id(route.service))
            await maybe_await(attach(self.deliver))

    async def _close_components(self) -> None:
        for component in self._components():
            close = getattr(component, 'close', None)
            if close is None or not callable(close):
                continue
            try:
                await maybe_await(close())
            except Exception as e:
                logger.error(f"Closing {type(component).__name__} failed: {e}")


async def _fetch(source: Any) -> Message:
    return await maybe_await(source.next())


async def _handle(service: Any, message: Message) -> Optional[Message]:
    return await maybe_await(service.handle(message))


def _component_name(component: Any, index: int) -> str:
    return f"#{index} ({getattr(component, 'name', None) or type(component).__name__})"
