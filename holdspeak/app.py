from __future__ import annotations

import asyncio
from asyncio import CancelledError
from contextlib import suppress

from holdspeak.agent import ChatAgent, DictationPostTreatment, Provider, SessionTracker, build_client
from holdspeak.assistant import AssistantRouter, SelectedTextCache
from holdspeak.automation import Notifier, PermissionCache
from holdspeak.classifier import CommandClassifier
from holdspeak.config import CommandLineParser, Config
from holdspeak.delivery import (
    Clipboard,
    DeliveryChain,
    FocusVerifiedPasteStrategy,
    NativePasteStrategy,
    NotesAppPasteStrategy,
    SmartSpacer,
    StagedPasteStrategy,
    TypingStrategy,
)
from holdspeak.desktop import LinuxDesktopAutomation
from holdspeak.focus import FocusDetector
from holdspeak.hotkey import HotKeyTask
from holdspeak.orchestrator import PushToTalkOrchestrator
from holdspeak.overlay import ConsoleOverlay, SocketOverlay
from holdspeak.recording import RecordingSession
from holdspeak.transcription import Backend, ChunkedTranscription, DeepgramTranscriber, OpenAITranscriber


def build_orchestrator(app_config: Config.App) -> PushToTalkOrchestrator:
    console = app_config.console
    backend = LinuxDesktopAutomation(keyboard_delay_ms=app_config.output.keyboard_delay_ms)
    clipboard = Clipboard()
    notifier = Notifier(backend)

    strategies = [
        NotesAppPasteStrategy(backend, clipboard),
        NativePasteStrategy(backend, clipboard),
        StagedPasteStrategy(backend, clipboard),
        FocusVerifiedPasteStrategy(backend, clipboard),
        TypingStrategy(backend, clipboard),
    ]
    delivery = DeliveryChain(backend, strategies, PermissionCache(), notifier, spacer=SmartSpacer(), console=console)

    transcription_config = app_config.transcription
    if transcription_config.backend is Backend.OPENAI:
        gateway = OpenAITranscriber(
            build_client(Provider.OPENAI, transcription_config.api_key),
            transcription_config.model,
            transcription_config.language,
        )
    else:
        gateway = DeepgramTranscriber(transcription_config.api_key, transcription_config.model, transcription_config.language)
    transcription = ChunkedTranscription(gateway, transcription_config.chunking)

    assistant_config = app_config.assistant
    classifier = CommandClassifier(assistant_config.wake_names or ("jarvis",))

    post_treatment = None
    if app_config.post.enabled:
        post = app_config.post
        post_treatment = DictationPostTreatment(build_client(post.provider, post.api_key), post.model, post.prompt, post.provider)

    orchestrator = PushToTalkOrchestrator(
        recorder=RecordingSession(gain=app_config.capture.gain),
        transcription=transcription,
        classifier=classifier,
        delivery=delivery,
        notifier=notifier,
        post_treatment=post_treatment,
        audio_feedback=app_config.capture.audio_feedback,
        console=console,
    )

    if assistant_config.enabled:
        name = assistant_config.wake_names[0].capitalize()
        if app_config.output.overlay_socket is not None:
            overlay = SocketOverlay(app_config.output.overlay_socket)
        else:
            overlay = ConsoleOverlay(console, assistant_name=name)
        orchestrator.router = AssistantRouter(
            agent=ChatAgent(build_client(assistant_config.provider, assistant_config.api_key), assistant_config.model, assistant_config.provider, name),
            classifier=classifier,
            sessions=SessionTracker(),
            focus=FocusDetector(backend),
            overlay=overlay,
            selection=SelectedTextCache(backend),
            is_dictation_active=orchestrator.is_dictation_active,
            console=console,
        )
    return orchestrator


async def main_async():
    app_config = CommandLineParser.parse()
    if app_config is None:
        return

    orchestrator = build_orchestrator(app_config)
    hotkey_task = HotKeyTask(
        orchestrator,
        HotKeyTask.Settings(
            device=app_config.hotkey.device,
            code=app_config.hotkey.code,
            double_tap_window=app_config.hotkey.double_tap_window,
        ),
    )
    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(hotkey_task.run())
    except* (KeyboardInterrupt, CancelledError):
        print("\nExit.")
    except* Exception as eg:
        print(f"\nError in tasks: {eg.exceptions}")
    finally:
        orchestrator.hard_cancel()
        if isinstance(overlay := getattr(orchestrator.router, "overlay", None), SocketOverlay):
            with suppress(Exception):
                await overlay.close()
        with suppress(Exception):
            app_config.hotkey.device.close()
        app_config.console.close()


def main():
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
