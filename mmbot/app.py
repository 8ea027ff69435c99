"""
Process entry point.

The vendor adapter is plugged in by import path, since no exchange client
ships with the bot:

    MM_EXCHANGE_ADAPTER=mybot.adapters.azbit:create_adapter
    MM_REFERENCE_ADAPTERS=p2pb2b=mybot.adapters.p2pb2b:create_adapter

Each factory is called with the loaded Settings and returns an object
implementing ExchangeAdapter.
"""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
import os
import signal
import sys
from typing import Callable, Dict, Optional

from prometheus_client import start_http_server

from mmbot.bot_factory import BotDependencies, create_bot
from mmbot.config.config import Settings, TradeParams
from mmbot.core.errors import ConfigurationError
from mmbot.exchange.interfaces import ExchangeAdapter
from mmbot.infra.logging_cfg import build_logger

log = logging.getLogger("mmbot")


def load_factory(path: str) -> Callable[[Settings], ExchangeAdapter]:
    """Resolve "package.module:callable"."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Adapter path must look like package.module:factory, got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import adapter module {module_name!r}: {exc}") from exc
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"{path!r} is not callable")
    return factory


def parse_reference_adapters(raw: Optional[str]) -> Dict[str, str]:
    """ "azbit=a.b:f,p2pb2b=c.d:g" -> {"azbit": "a.b:f", "p2pb2b": "c.d:g"} """
    result: Dict[str, str] = {}
    for item in (raw or "").split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, path = item.partition("=")
        if not sep:
            raise ConfigurationError(f"MM_REFERENCE_ADAPTERS entry must look like name=module:factory, got {item!r}")
        result[name.strip().lower()] = path.strip()
    return result


async def run(settings: Settings, params: TradeParams) -> None:
    adapter_path = os.getenv("MM_EXCHANGE_ADAPTER")
    if not adapter_path:
        raise ConfigurationError("MM_EXCHANGE_ADAPTER is not set")
    adapter = load_factory(adapter_path)(settings)
    references = {
        name: load_factory(path)(settings)
        for name, path in parse_reference_adapters(os.getenv("MM_REFERENCE_ADAPTERS")).items()
    }

    bot = create_bot(BotDependencies(settings=settings, params=params, adapter=adapter, reference_exchanges=references))
    if settings.metrics_port > 0:
        start_http_server(settings.metrics_port, registry=bot.metrics.get_registry())
        log.info(json.dumps({"event": "metrics_server_started", "port": settings.metrics_port}))

    await bot.alert_manager.alert_startup(settings.pair, exchange=settings.exchange)
    await bot.start()
    log.info(json.dumps({"event": "startup", "pair": settings.pair, "params": params.dump()}))

    loop = asyncio.get_running_loop()
    stopping = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopping.set)
        except NotImplementedError:
            pass

    wait_task = asyncio.create_task(bot.wait())
    stop_task = asyncio.create_task(stopping.wait())
    try:
        await asyncio.wait({wait_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        log.info(json.dumps({"event": "shutdown", "pair": settings.pair}))
        await bot.alert_manager.alert_shutdown("signal_received" if stopping.is_set() else "loops_exited")
        stop_task.cancel()
        await bot.stop()
        await asyncio.gather(wait_task, stop_task, return_exceptions=True)


def main() -> None:
    try:
        settings = Settings.load()
        params = TradeParams.from_env()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    build_logger("mmbot", level=getattr(logging, settings.log_level, logging.INFO), file_path=settings.log_file)
    try:
        asyncio.run(run(settings, params))
    except ConfigurationError as exc:
        log.error(json.dumps({"event": "startup_failed", "err": str(exc)}))
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
