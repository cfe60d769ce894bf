#!/usr/bin/env python3
"""HomePilot command console daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from homepilot.console.catalog import TargetCatalog, load_catalog_layout
from homepilot.console.config import ConsoleConfig
from homepilot.console.dispatcher import ActionDispatcher
from homepilot.console.feedback import FeedbackPublisher
from homepilot.console.intent import build_intent_classifier
from homepilot.console.listening import ListeningManager
from homepilot.console.mqtt import ConsoleMqtt
from homepilot.console.orchestrator import CommandOrchestrator
from homepilot.console.query_responder import QueryResponder
from homepilot.console.recognizer import WyomingRecognizer
from homepilot.console.resolver import TargetResolver
from homepilot.console.routines import RoutineMatcher, load_routines
from homepilot.console.scheduler import DeferredActionScheduler
from homepilot.console.smart_home import DeviceRefresher, SmartHomeClient, SmartHomeError
from homepilot.console.speech import SpeechOutput, WyomingSynthesizer

LOGGER = logging.getLogger("homepilot-console")

EXIT_WORDS = {"exit", "quit"}


class HomePilotConsole:
    def __init__(self, config: ConsoleConfig) -> None:
        self.config = config
        self.mqtt = ConsoleMqtt(config.mqtt, logger=LOGGER)
        rooms, groups = load_catalog_layout(config.catalog_file)
        self.catalog = TargetCatalog(rooms=rooms, groups=groups)
        self.smart_home: SmartHomeClient | None = None
        self.refresher: DeviceRefresher | None = None
        if config.smart_home.base_url:
            self.smart_home = SmartHomeClient(config.smart_home)
            self.refresher = DeviceRefresher(self.smart_home, self.catalog, poll_seconds=config.smart_home.poll_seconds)
        else:
            LOGGER.warning("HOMEPILOT_SMARTHOME_URL is not set; device control is disabled")
        resolver = TargetResolver(self.catalog)
        self.feedback = FeedbackPublisher(config, self.mqtt)
        self.listening = ListeningManager(
            WyomingRecognizer(
                config.mic,
                config.phrase,
                config.voice.stt_endpoint,
                language=config.listening.language,
            ),
            restart_cooldown=config.listening.restart_cooldown_ms / 1000,
        )
        self.orchestrator = CommandOrchestrator(
            config=config.listening,
            catalog=self.catalog,
            listening=self.listening,
            routines=RoutineMatcher(load_routines(config.routines_file, config.inline_routines)),
            classifier=build_intent_classifier(config.classifier),
            dispatcher=ActionDispatcher(
                self.catalog,
                executor=self.smart_home,
                scheduler=DeferredActionScheduler(config.timer_service),
                refresher=self.refresher,
                resolver=resolver,
            ),
            query_responder=QueryResponder(
                self.catalog,
                refresher=self.refresher,
                resolver=resolver,
                settle_seconds=config.smart_home.refresh_settle_seconds,
            ),
            speech=SpeechOutput(WyomingSynthesizer(config.voice), enabled=config.voice.output_enabled),
            feedback=self.feedback,
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._poll_stop = asyncio.Event()
        self._poll_task: asyncio.Task | None = None

    async def start(self, *, listen: bool) -> None:
        self._loop = asyncio.get_running_loop()
        self.mqtt.connect()
        if self.mqtt.enabled:
            try:
                self.mqtt.subscribe(self.config.command_topic, self._handle_remote_command)
            except RuntimeError as exc:
                LOGGER.warning("Remote commands disabled: %s", exc)
        if self.refresher is not None:
            try:
                await self.refresher.sync()
            except SmartHomeError as exc:
                LOGGER.warning("Initial device sync failed: %s", exc)
            self._poll_task = asyncio.create_task(self.refresher.run_polling(self._poll_stop))
        self.feedback.publish_state(self.listening.state)
        LOGGER.info(
            "HomePilot console ready (wake word: %s, %d devices)",
            self.config.listening.wake_word,
            len(self.catalog.devices()),
        )
        if listen:
            self.orchestrator.start_listening()

    async def run_text_repl(self, stop_event: asyncio.Event) -> None:
        print(f'Type a command (the wake word "{self.config.listening.wake_word}" is implied). "quit" exits.')
        while not stop_event.is_set():
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if text.lower() in EXIT_WORDS:
                break
            outcome = await self.orchestrator.submit_text(text)
            if outcome is not None and outcome.banner is not None:
                print(f"[{outcome.banner.kind}] {outcome.banner.message}")
        stop_event.set()

    async def shutdown(self) -> None:
        self._poll_stop.set()
        if self._poll_task is not None:
            await asyncio.gather(self._poll_task, return_exceptions=True)
        await self.orchestrator.stop_listening()
        await self.listening.shutdown()
        if self.smart_home is not None:
            await self.smart_home.close()
        self.mqtt.disconnect()

    def _handle_remote_command(self, payload: str) -> None:
        if self._loop is None:
            return
        self.orchestrator.submit_remote(payload, self._loop)


async def main() -> None:
    parser = argparse.ArgumentParser(description="HomePilot voice/text command console")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--listen", action="store_true", help="start voice listening immediately")
    parser.add_argument("--text", action="store_true", help="read typed commands from stdin")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = ConsoleConfig.from_env()
    console = HomePilotConsole(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    await console.start(listen=args.listen)
    repl_task: asyncio.Task | None = None
    if args.text:
        repl_task = asyncio.create_task(console.run_text_repl(stop_event))
    await stop_event.wait()
    await console.shutdown()
    if repl_task is not None:
        repl_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await repl_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
