from __future__ import annotations

import argparse
import os
import sys
from contextlib import suppress
from itertools import product
from pathlib import Path
from typing import NamedTuple

import evdev
import soundcard as sc
from dotenv import load_dotenv
from evdev import InputDevice, ecodes
from platformdirs import user_config_dir
from pydotool import init as pydotool_init
from rich.panel import Panel
from rich.table import Table

from holdspeak.agent import Provider
from holdspeak.chunker import ChunkingOptions
from holdspeak.console import ConsoleWithLogging, errprint
from holdspeak.hotkey import F_KEY_CODES, parse_hotkey
from holdspeak.transcription import Backend, DeepgramTranscriber, OpenAITranscriber

APP_NAME = "holdspeak"


class Config:
    class HotKey(NamedTuple):
        device: InputDevice
        code: int
        name: str
        double_tap_window: float

    class Capture(NamedTuple):
        gain: float
        microphone_name: str | None
        microphone_id: str | None
        audio_feedback: bool

    class Transcription(NamedTuple):
        backend: Backend
        api_key: str
        model: OpenAITranscriber.Model | DeepgramTranscriber.Model
        language: str | None
        chunking: ChunkingOptions

    class Assistant(NamedTuple):
        enabled: bool
        provider: Provider
        model: str
        api_key: str | None
        wake_names: tuple[str, ...]

    class PostTreatment(NamedTuple):
        enabled: bool
        prompt: str | None
        provider: Provider
        model: str
        api_key: str | None

    class Output(NamedTuple):
        keyboard_delay_ms: int
        overlay_socket: Path | None

    class App(NamedTuple):
        console: ConsoleWithLogging
        hotkey: Config.HotKey
        capture: Config.Capture
        transcription: Config.Transcription
        assistant: Config.Assistant
        post: Config.PostTreatment
        output: Config.Output


class CommandLineParser:
    ENV_PREFIX = "HOLDSPEAK_"
    _PROMPT_FOR_MICROPHONE = object()
    _PROMPT_FOR_KEYBOARD = object()
    _UNDEFINED = object()

    @classmethod
    def get_env(cls, name: str, default: str | None = None, prefix_optional: bool = False):
        result = os.getenv(f"{cls.ENV_PREFIX}{name}", default)
        if prefix_optional and result is None:
            result = os.getenv(name, default)
        return result

    @classmethod
    def get_env_bool(cls, name: str, default: bool = False, prefix_optional: bool = False):
        return cls._env_truthy(cls.get_env(name, str(default), prefix_optional))

    @classmethod
    def _resolve_prompt_part(cls, prompt_value: str, config_dir: Path) -> tuple[str, Path | None]:
        """
        Resolve a single prompt part to either file content or literal text.

        Returns:
            (content, file_path) where file_path is None if using literal text
        """
        prompt_path = Path(prompt_value).expanduser()
        extensions = [None, ".txt", ".prompt"]
        if prompt_path.is_absolute():
            directories = [None]
        else:
            directories = [Path.cwd(), config_dir]
        candidates = []
        for directory, ext in product(directories, extensions if not prompt_path.suffix else [None]):
            path = prompt_path if directory is None else directory / prompt_path
            candidates.append(path.with_suffix(ext) if ext else path)

        found_file = next((path for path in candidates if path.is_file()), None)
        if found_file is None:
            return (prompt_value, None)
        try:
            content = found_file.read_text(encoding="utf-8").strip()
        except OSError as exc:
            errprint(f"ERROR: Unable to read post-treatment prompt file: {exc}")
            return ("", None)
        if not content:
            errprint(f"ERROR: Post-treatment prompt file is empty: {found_file}")
            return ("", None)
        return (content, found_file)

    @classmethod
    def _resolve_prompts(cls, prompts_str: str, config_dir: Path) -> tuple[str, list[Path]]:
        """Resolve prompts separated by '::', each being literal text or a file, joined with blank lines"""
        contents = []
        files = []
        for part in prompts_str.split("::"):
            if not (part := part.strip()):
                continue
            content, file_path = cls._resolve_prompt_part(part, config_dir)
            if not content:
                return ("", [])
            contents.append(content)
            if file_path:
                files.append(file_path)
        return ("\n\n".join(contents), files)

    @classmethod
    def _create_arguments(cls, parser: argparse.ArgumentParser, default: dict[str, str | bool | int | float | None]):
        prefix = cls.ENV_PREFIX
        parser.add_argument(
            "-c",
            "--config",
            default=default.get("CONFIG_PATH", cls._UNDEFINED),
            help=f"Path to config file to load instead of the default user config ({default.get('CONFIG_PATH')})",
        )
        parser.add_argument(
            "-k",
            "--hotkey",
            default=default["HOTKEY"],
            help=f"Push-to-talk key, F1-F12 (env: {prefix}HOTKEY)",
        )
        parser.add_argument(
            "-dtw",
            "--double-tap-window",
            type=float,
            default=default["DOUBLE_TAP_WINDOW"],
            help=f"Time window in seconds for double-tap detection (env: {prefix}DOUBLE_TAP_WINDOW)",
        )
        parser.add_argument(
            "-kb",
            "--keyboard",
            nargs="?",
            default=default["KEYBOARD"],
            const=cls._PROMPT_FOR_KEYBOARD,
            help=f"Text filter for selecting the keyboard input device; pass without a value to pick interactively (env: {prefix}KEYBOARD)",
        )
        parser.add_argument(
            "-m",
            "--model",
            default=default["MODEL"],
            choices=[m.value for m in OpenAITranscriber.Model] + [m.value for m in DeepgramTranscriber.Model],
            help=f"OpenAI or Deepgram model to use for transcription (env: {prefix}MODEL)",
        )
        parser.add_argument(
            "-l",
            "--language",
            default=default["LANGUAGE"],
            help=f"Transcription language, leave empty for auto-detect (env: {prefix}LANGUAGE)",
        )
        parser.add_argument(
            "-g",
            "--gain",
            type=float,
            default=default["GAIN"],
            help=f"Microphone amplification factor, 1.0=normal, 2.0=double (env: {prefix}GAIN)",
        )
        parser.add_argument(
            "-mic",
            "--microphone",
            nargs="?",
            default=default["MICROPHONE"],
            const=cls._PROMPT_FOR_MICROPHONE,
            help=f"Text filter or ID for selecting the microphone; pass without a value to pick interactively (env: {prefix}MICROPHONE)",
        )
        parser.add_argument(
            "-af",
            "--audio-feedback",
            action=argparse.BooleanOptionalAction,
            default=default["AUDIO_FEEDBACK"],
            help=f"Play a short tone when recording starts (env: {prefix}AUDIO_FEEDBACK)",
        )
        parser.add_argument(
            "-cd",
            "--chunk-duration",
            type=int,
            default=default["CHUNK_DURATION"],
            help=f"Longest audio sent in one transcription call, in seconds (env: {prefix}CHUNK_DURATION)",
        )
        parser.add_argument(
            "-co",
            "--chunk-overlap",
            type=int,
            default=default["CHUNK_OVERLAP"],
            help=f"Overlap between consecutive chunks, in milliseconds (env: {prefix}CHUNK_OVERLAP)",
        )
        parser.add_argument(
            "-koa",
            "--openai-api-key",
            default=default["OPENAI_API_KEY"],
            help=f"OpenAI API key (env: {prefix}OPENAI_API_KEY or OPENAI_API_KEY)",
        )
        parser.add_argument(
            "-kdg",
            "--deepgram-api-key",
            default=default["DEEPGRAM_API_KEY"],
            help=f"Deepgram API key (env: {prefix}DEEPGRAM_API_KEY or DEEPGRAM_API_KEY)",
        )
        parser.add_argument(
            "-kcb",
            "--cerebras-api-key",
            default=default["CEREBRAS_API_KEY"],
            help=f"Cerebras API key (env: {prefix}CEREBRAS_API_KEY or CEREBRAS_API_KEY)",
        )
        parser.add_argument(
            "-kor",
            "--openrouter-api-key",
            default=default["OPENROUTER_API_KEY"],
            help=f"OpenRouter API key (env: {prefix}OPENROUTER_API_KEY or OPENROUTER_API_KEY)",
        )
        parser.add_argument(
            "-na",
            "--no-assistant",
            action="store_true",
            default=default["ASSISTANT_DISABLED"],
            help=f"Treat everything as dictation, never call the assistant (env: {prefix}ASSISTANT_DISABLED)",
        )
        parser.add_argument(
            "-ap",
            "--assistant-provider",
            default=default["ASSISTANT_PROVIDER"],
            choices=[p.value for p in Provider],
            help=f"Provider for the assistant (env: {prefix}ASSISTANT_PROVIDER)",
        )
        parser.add_argument(
            "-am",
            "--assistant-model",
            default=default["ASSISTANT_MODEL"],
            help=f"Model for the assistant (env: {prefix}ASSISTANT_MODEL)",
        )
        parser.add_argument(
            "-w",
            "--wake-names",
            default=default["WAKE_NAMES"],
            help=f"Comma-separated names the assistant answers to, as in 'hey jarvis' (env: {prefix}WAKE_NAMES)",
        )
        parser.add_argument(
            "-p",
            "--post-prompt",
            default=default["POST_TREATMENT_PROMPT"],
            help=f"Dictation post-treatment instructions, or path to a prompt file, '::'-separated (env: {prefix}POST_TREATMENT_PROMPT)",
        )
        parser.add_argument(
            "-pm",
            "--post-model",
            default=default["POST_TREATMENT_MODEL"],
            help=f"Model for post-treatment (env: {prefix}POST_TREATMENT_MODEL)",
        )
        parser.add_argument(
            "-pp",
            "--post-provider",
            default=default["POST_TREATMENT_PROVIDER"],
            choices=[p.value for p in Provider],
            help=f"Provider for post-treatment (env: {prefix}POST_TREATMENT_PROVIDER)",
        )
        parser.add_argument(
            "-kd",
            "--keyboard-delay",
            type=int,
            default=default["KEYBOARD_DELAY"],
            help=f"Delay in milliseconds between keyboard actions. Default: 20ms (env: {prefix}KEYBOARD_DELAY)",
        )
        parser.add_argument(
            "-ys",
            "--ydotool-socket",
            default=default["YDOTOOL_SOCKET"],
            help=f"Path to ydotool socket (env: {prefix}YDOTOOL_SOCKET or YDOTOOL_SOCKET)",
        )
        parser.add_argument(
            "-os",
            "--overlay-socket",
            default=default["OVERLAY_SOCKET"],
            help=f"Unix socket of an on-screen display for assistant answers; answers go to the terminal otherwise (env: {prefix}OVERLAY_SOCKET)",
        )
        parser.add_argument(
            "--log",
            default=default["LOG"],
            help=f"Path to log file. Default: ~/.config/{APP_NAME}/{APP_NAME}.log (env: {prefix}LOG)",
        )

    @classmethod
    def _provider_key(cls, provider: Provider, args: argparse.Namespace) -> str | None:
        match provider:
            case Provider.OPENAI:
                return args.openai_api_key
            case Provider.CEREBRAS:
                return args.cerebras_api_key
            case Provider.OPENROUTER:
                return args.openrouter_api_key

    @classmethod
    def _missing_key_error(cls, provider: Provider, purpose: str):
        name = provider.name
        option = provider.value
        errprint(
            f"ERROR: {provider.value.capitalize()} API key is not defined (for {purpose})\n"
            f"Please set {name}_API_KEY or {cls.ENV_PREFIX}{name}_API_KEY environment variable or pass it via --{option}-api-key argument"
        )

    @classmethod
    def parse(cls) -> Config.App | None:
        config_path_mandatory = False
        if config_path_str := cls._extract_config_path_from_argv():
            config_path_mandatory = True
        else:
            config_path_str = (os.getenv(f"{cls.ENV_PREFIX}CONFIG") or "").strip()

        config_dir = Path(user_config_dir(APP_NAME, ensure_exists=False))

        config_path = None
        if config_path_str:
            config_path = Path(config_path_str).expanduser()
            # `work` => `~/.config/holdspeak/work.env` when no such file exists relative to the current directory
            if (
                not config_path.is_absolute()
                and not (Path.cwd() / config_path).exists()
                and not (config_path := (config_dir / f"{config_path}.env")).exists()
            ):
                config_path = None
        if config_path is None:
            config_path = config_dir / "config.env"
        if not config_path.is_absolute():
            config_path = Path.cwd() / config_path
        config_path = config_path.resolve(strict=False)

        if config_path_mandatory and not config_path.is_file():
            errprint(f"ERROR: Config file {config_path} does not exist or is not a file")
            return None

        success, loaded_config_files = cls._load_env_files(config_path)
        if not success:
            return None

        epilog = f"""Configuration files:
  1. .env file in the current directory
  2. ~/.config/{APP_NAME}/config.env (or the one given with --config)
  3. Other config files referenced by {cls.ENV_PREFIX}PARENT_CONFIG in config files

  Command-line arguments take precedence over environment variables, which take precedence over files.
  Each option can be set via environment variable using the {cls.ENV_PREFIX} prefix.
  *_API_KEY and YDOTOOL_SOCKET environment variables can also be set without the prefix.
  """

        parser = argparse.ArgumentParser(
            prog=APP_NAME,
            description="Push to talk dictation and voice assistant",
            epilog=epilog,
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        default: dict[str, str | bool | int | float | None] = {
            "HOTKEY": cls.get_env("HOTKEY", "f9"),
            "DOUBLE_TAP_WINDOW": float(cls.get_env("DOUBLE_TAP_WINDOW", "0.5")),
            "KEYBOARD": cls.get_env("KEYBOARD"),
            "MODEL": cls.get_env("MODEL", OpenAITranscriber.Model.GPT_4O_TRANSCRIBE.value),
            "LANGUAGE": cls.get_env("LANGUAGE"),
            "GAIN": float(cls.get_env("GAIN", "1.0")),
            "MICROPHONE": cls.get_env("MICROPHONE"),
            "AUDIO_FEEDBACK": cls.get_env_bool("AUDIO_FEEDBACK"),
            "CHUNK_DURATION": int(cls.get_env("CHUNK_DURATION", "120")),
            "CHUNK_OVERLAP": int(cls.get_env("CHUNK_OVERLAP", "1000")),
            "OPENAI_API_KEY": cls.get_env("OPENAI_API_KEY", prefix_optional=True),
            "DEEPGRAM_API_KEY": cls.get_env("DEEPGRAM_API_KEY", prefix_optional=True),
            "CEREBRAS_API_KEY": cls.get_env("CEREBRAS_API_KEY", prefix_optional=True),
            "OPENROUTER_API_KEY": cls.get_env("OPENROUTER_API_KEY", prefix_optional=True),
            "ASSISTANT_DISABLED": cls.get_env_bool("ASSISTANT_DISABLED"),
            "ASSISTANT_PROVIDER": cls.get_env("ASSISTANT_PROVIDER", Provider.OPENAI.value),
            "ASSISTANT_MODEL": cls.get_env("ASSISTANT_MODEL", "gpt-4o-mini"),
            "WAKE_NAMES": cls.get_env("WAKE_NAMES", "jarvis"),
            "POST_TREATMENT_PROMPT": cls.get_env("POST_TREATMENT_PROMPT", ""),
            "POST_TREATMENT_MODEL": cls.get_env("POST_TREATMENT_MODEL", "gpt-4o-mini"),
            "POST_TREATMENT_PROVIDER": cls.get_env("POST_TREATMENT_PROVIDER", Provider.OPENAI.value),
            "KEYBOARD_DELAY": int(cls.get_env("KEYBOARD_DELAY", "20")),
            "YDOTOOL_SOCKET": cls.get_env("YDOTOOL_SOCKET", prefix_optional=True),
            "OVERLAY_SOCKET": cls.get_env("OVERLAY_SOCKET"),
            "LOG": cls.get_env("LOG"),
            "CONFIG_PATH": config_path.as_posix(),
        }

        cls._create_arguments(parser, default)
        args = parser.parse_args()

        try:
            transcription_model = OpenAITranscriber.Model(args.model)
            backend = Backend.OPENAI
        except ValueError:
            transcription_model = DeepgramTranscriber.Model(args.model)
            backend = Backend.DEEPGRAM

        transcription_key = args.openai_api_key if backend is Backend.OPENAI else args.deepgram_api_key
        if not transcription_key:
            env_name = "OPENAI" if backend is Backend.OPENAI else "DEEPGRAM"
            errprint(
                f'ERROR: {env_name.capitalize()} API key is not defined (for "{transcription_model.value}" transcription model)\n'
                f"Please set {env_name}_API_KEY or {cls.ENV_PREFIX}{env_name}_API_KEY environment variable "
                f"or pass it via --{env_name.lower()}-api-key argument"
            )
            return None

        if args.chunk_duration <= 0 or args.chunk_overlap < 0:
            errprint("ERROR: --chunk-duration must be positive and --chunk-overlap cannot be negative")
            return None

        assistant_provider = Provider(args.assistant_provider)
        assistant_key = cls._provider_key(assistant_provider, args)
        assistant_enabled = not args.no_assistant
        if assistant_enabled and not assistant_key:
            cls._missing_key_error(assistant_provider, f'"{args.assistant_model}" assistant model')
            return None
        wake_names = tuple(name.strip() for name in args.wake_names.split(",") if name.strip())
        if assistant_enabled and not wake_names:
            errprint("ERROR: At least one wake name is needed for the assistant")
            return None

        post_prompt, post_prompt_files = ("", [])
        if args.post_prompt:
            post_prompt, post_prompt_files = cls._resolve_prompts(args.post_prompt, config_dir)
            if not post_prompt:
                return None
        post_provider = Provider(args.post_provider)
        post_key = cls._provider_key(post_provider, args)
        if post_prompt and not post_key:
            cls._missing_key_error(post_provider, f'"{args.post_model}" post-treatment model')
            return None

        try:
            hotkey_code = parse_hotkey(args.hotkey)
        except ValueError as exc:
            errprint(f"ERROR: {exc}")
            return None

        try:
            force_keyboard_prompt = args.keyboard is cls._PROMPT_FOR_KEYBOARD
            keyboard_filter = args.keyboard.strip() if isinstance(args.keyboard, str) and args.keyboard.strip() else None
            keyboard = cls._find_keyboard(filter_text=keyboard_filter, force_prompt=force_keyboard_prompt)
        except Exception as exc:
            errprint(f"ERROR: Unable to find keyboard: {exc}")
            return None

        try:
            force_microphone_prompt = args.microphone is cls._PROMPT_FOR_MICROPHONE
            microphone_filter = args.microphone.strip() if isinstance(args.microphone, str) and args.microphone.strip() else None
            microphone = cls._find_microphone(filter_text=microphone_filter, force_prompt=force_microphone_prompt)
        except Exception as exc:
            errprint(f"ERROR: Unable to find microphone: {exc}")
            return None

        if microphone.id:
            os.environ["PULSE_SOURCE"] = microphone.id

        if args.ydotool_socket:
            os.environ["YDOTOOL_SOCKET"] = args.ydotool_socket
        pydotool_init()

        if args.log:
            log_path = Path(args.log).expanduser()
        else:
            log_path = Path(user_config_dir(APP_NAME, ensure_exists=True)) / f"{APP_NAME}.log"
        console = ConsoleWithLogging.open(log_path)

        overlay_socket = Path(args.overlay_socket).expanduser() if args.overlay_socket else None

        app_config = Config.App(
            console=console,
            hotkey=Config.HotKey(
                device=keyboard,
                code=hotkey_code,
                name=args.hotkey.strip().upper(),
                double_tap_window=args.double_tap_window,
            ),
            capture=Config.Capture(
                gain=args.gain,
                microphone_name=microphone.name,
                microphone_id=microphone.id,
                audio_feedback=args.audio_feedback,
            ),
            transcription=Config.Transcription(
                backend=backend,
                api_key=transcription_key,
                model=transcription_model,
                language=args.language,
                chunking=ChunkingOptions(max_chunk_duration_ms=args.chunk_duration * 1000, overlap_ms=args.chunk_overlap),
            ),
            assistant=Config.Assistant(
                enabled=assistant_enabled,
                provider=assistant_provider,
                model=args.assistant_model,
                api_key=assistant_key,
                wake_names=wake_names,
            ),
            post=Config.PostTreatment(
                enabled=bool(post_prompt),
                prompt=post_prompt or None,
                provider=post_provider,
                model=args.post_model,
                api_key=post_key,
            ),
            output=Config.Output(
                keyboard_delay_ms=args.keyboard_delay,
                overlay_socket=overlay_socket,
            ),
        )
        cls._display(app_config, keyboard, loaded_config_files, post_prompt_files, log_path)
        return app_config

    @staticmethod
    def _display(app_config: Config.App, keyboard: InputDevice, config_files: list[Path], prompt_files: list[Path], log_path: Path):
        def format_path(path: Path) -> str:
            try:
                return f"~/{path.relative_to(Path.home())}"
            except ValueError:
                return str(path)

        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column(style="bold cyan", width=20)
        table.add_column()

        transcription = app_config.transcription
        table.add_row("Transcription", f"[yellow]{transcription.model.value}[/yellow] from [green]{transcription.backend.value}[/green]")
        table.add_row("Language", f"[yellow]{transcription.language}[/yellow]" if transcription.language else "[dim]Auto-detect[/dim]")
        if app_config.capture.gain != 1.0:
            table.add_row("Audio gain", f"[yellow]{app_config.capture.gain}x[/yellow]")
        table.add_row("Hotkey", f"[bold yellow]{app_config.hotkey.name}[/bold yellow]")
        table.add_row("", "[dim]Hold: push-to-talk | Double-tap: toggle mode | Esc: cancel[/dim]")
        table.add_row("Keyboard", f"[yellow]{keyboard.name}[/yellow]")
        microphone = app_config.capture.microphone_name or app_config.capture.microphone_id or "microphone"
        table.add_row("Microphone", f"[yellow]{microphone}[/yellow]")

        assistant = app_config.assistant
        if assistant.enabled:
            names = ", ".join(name.capitalize() for name in assistant.wake_names)
            table.add_row("Assistant", f"Via [yellow]{assistant.model}[/yellow] from [green]{assistant.provider.value}[/green]")
            table.add_row("", f'[dim]Say "hey {assistant.wake_names[0]}, ..." ({names}) or hold [bold]Alt[/bold] while talking[/dim]')
        else:
            table.add_row("Assistant", "[red]Disabled[/red]")

        post = app_config.post
        if post.enabled:
            table.add_row("Post-treatment", f"Via [yellow]{post.model}[/yellow] from [green]{post.provider.value}[/green]")
            preview = post.prompt.replace("\n", " ")
            table.add_row("", f"[dim]Prompt: {preview[:50] + '...' if len(preview) > 50 else preview}[/dim]")

        table.add_row("Answers", f"[yellow]{format_path(app_config.output.overlay_socket)}[/yellow]" if app_config.output.overlay_socket else "[yellow]Terminal[/yellow]")

        table.add_row("", "")
        table.add_row("[bold]Files", "")
        if config_files:
            table.add_row("  Config", "[dim](loaded in priority order, last overrides first)[/dim]" if len(config_files) > 1 else f"[yellow]{format_path(config_files[0])}[/yellow]")
            if len(config_files) > 1:
                for i, config_file in enumerate(config_files, 1):
                    table.add_row("", f"[yellow]  {i}. {format_path(config_file)}[/yellow]")
        else:
            table.add_row("  Config", "[dim]None loaded[/dim]")
        for i, prompt_file in enumerate(prompt_files):
            table.add_row("  Prompt" if i == 0 else "", f"[yellow]{format_path(prompt_file)}[/yellow]")
        table.add_row("  Log", f"[yellow]{format_path(log_path)}[/yellow]")

        console = app_config.console
        console.print_and_log(Panel(table, title="[bold]HoldSpeak Configuration[/bold]", border_style="blue"), log_max_width=150)
        console.print()
        console.print(
            f"[bold green]Ready![/bold green] Hold (or double tap) [bold yellow]{app_config.hotkey.name}[/bold yellow] to start recording. "
            f"Press [bold red]Ctrl+C[/bold red] to stop the program.\n"
        )

    @classmethod
    def _load_env_files(cls, config_path: Path) -> tuple[bool, list[Path]]:
        """Load the local .env file then the config file (and its parents).

        Returns:
            Tuple of (success, loaded_files) where loaded_files contains paths in load order
        """
        loaded_files = []
        if (env_path := (Path.cwd() / ".env")).is_file():
            load_dotenv(env_path, override=False)
            loaded_files.append(env_path.resolve())

        config_files = []
        if config_path.is_file():
            success, config_files = cls._load_config_with_parents(config_path)
            if not success:
                return False, []

        return True, loaded_files + config_files

    @classmethod
    def _load_config_with_parents(cls, config_path: Path, visited: set[Path] | None = None, source: Path | None = None) -> tuple[bool, list[Path]]:
        """Load config file and its parents recursively.

        Returns:
            Tuple of (success, loaded_files), parents first
        """
        parent_key = f"{cls.ENV_PREFIX}PARENT_CONFIG"
        os.environ.pop(parent_key, None)
        visited = set() if visited is None else visited
        defined_in = f" (defined in {source})" if source else ""

        if config_path in visited:
            errprint(f"ERROR: Circular {parent_key} reference detected: {config_path}{defined_in}")
            return False, []
        visited.add(config_path)

        if not config_path.is_file():
            errprint(f"ERROR: Config file not found or is not a file: {config_path}{defined_in}")
            return False, []

        # values already set win, so the child is loaded before its parent
        load_dotenv(dotenv_path=config_path, override=False)

        loaded_files = []
        if parent_value := (os.environ.pop(parent_key, None) or "").strip():
            parent_path = Path(parent_value).expanduser()
            if not parent_path.is_absolute():
                parent_path = config_path.parent / parent_path
            success, loaded_files = cls._load_config_with_parents(parent_path.resolve(strict=False), visited=visited, source=config_path)
            if not success:
                return False, []

        loaded_files.append(config_path.resolve())
        return True, loaded_files

    @classmethod
    def _extract_config_path_from_argv(cls) -> str | None:
        parser = argparse.ArgumentParser(add_help=False)
        parser.add_argument("-c", "--config")
        args = parser.parse_known_args(sys.argv[1:])[0]
        return args.config.strip() if args.config else None

    @staticmethod
    def _env_truthy(val: str | None) -> bool:
        if not val:
            return False
        return val.strip().lower() in {"1", "true", "yes", "on"}

    @staticmethod
    def _pick(kind: str, candidates: list, describe) -> object:
        print(f"\nSelect your {kind}:")
        for idx, candidate in enumerate(candidates):
            print(f"  {idx}: {describe(candidate)}")
        return candidates[int(input(f"{kind.capitalize()} number: "))]

    @classmethod
    def _find_keyboard(cls, filter_text: str | None = None, force_prompt: bool = False) -> InputDevice:
        """The keyboard to listen to: the only physical one, or the one the user picks"""
        needle = (filter_text or "").lower()
        devices = [
            device for device in map(evdev.InputDevice, evdev.list_devices()) if needle in device.name.lower() or needle in device.path.lower()
        ]
        if not devices:
            raise RuntimeError(f'No input devices matched filter "{filter_text}"' if filter_text else "No input devices found")

        needed_keys = {ecodes.KEY_A, ecodes.KEY_Z, ecodes.KEY_ESC, ecodes.KEY_LEFTALT, *F_KEY_CODES.values()}
        mouse_buttons = {ecodes.BTN_LEFT, ecodes.BTN_RIGHT, ecodes.BTN_MIDDLE}
        virtual_markers = ("virtual", "dummy", "uinput", "ydotool")

        def looks_physical(device: InputDevice) -> bool:
            capabilities = device.capabilities(verbose=False)
            keys = set(capabilities.get(ecodes.EV_KEY, ()))
            return (
                needed_keys <= keys
                and not keys & mouse_buttons
                and ecodes.EV_REL not in capabilities
                and not any(marker in device.name.lower() for marker in virtual_markers)
            )

        keyboards = [device for device in devices if looks_physical(device)]
        if len(keyboards) == 1 and not force_prompt:
            chosen = keyboards[0]
        else:
            if not keyboards:
                errprint("WARNING: No physical keyboard detected automatically")
            chosen = cls._pick("keyboard", keyboards or devices, lambda device: f"{device.path} - {device.name}")
        for device in devices:
            if device is not chosen:
                with suppress(Exception):
                    device.close()
        return chosen

    @classmethod
    def _find_microphone(cls, filter_text: str | None = None, force_prompt: bool = False) -> sc.Microphone:
        """The microphone to record from: the filtered one, the system default, or the one the user picks"""
        microphones = sc.all_microphones(include_loopback=False)
        if not microphones:
            raise RuntimeError("No microphones detected")

        def describe(mic: sc.Microphone) -> str:
            return f"{mic.name or 'Unknown microphone'} ({mic.id})" if mic.id else mic.name or "Unknown microphone"

        if filter_text:
            needle = filter_text.lower()
            microphones = [mic for mic in microphones if needle in (mic.name or "").lower() or needle in (mic.id or "").lower()]
            if not microphones:
                raise RuntimeError(f'No microphones matched filter "{filter_text}"')
        elif not force_prompt and (default_microphone := sc.default_microphone()) is not None:
            return default_microphone

        if len(microphones) == 1 and not force_prompt:
            return microphones[0]
        return cls._pick("microphone", microphones, describe)
