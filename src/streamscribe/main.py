from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

from streamscribe.app.headless_file import HeadlessFileRunner
from streamscribe.app.headless_mic import HeadlessMicRunner
from streamscribe.app.headless_stdin import HeadlessStdinRunner
from streamscribe.app.provision import ModelDownloadError, ensure_whisper_setup
from streamscribe.app.wiring import resolve_whisper_paths
from streamscribe.config.paths import default_settings_path
from streamscribe.config.settings import AppSettings, load_settings
from streamscribe.core.stt.backend import RecognizerUnavailableError
from streamscribe.providers.stt.whisper_cpp import ensure_whisper_available

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"
LOG_FILE_MAX_BYTES = 1024 * 1024

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, datefmt=LOG_DATEFMT, force=True)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=0, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        logging.getLogger().addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="streamscribe")
    parser.add_argument("--version", action="store_true", help="Print version and exit")

    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check", help="Check that the whisper.cpp binary and model are available")

    setup = sub.add_parser("setup", help="Locate the whisper.cpp binary and download the configured model")
    setup.add_argument("--model", default=None, help="Model to fetch instead of the configured one (e.g. small.en)")
    setup.add_argument("--force", action="store_true", help="Download even if the model file already exists")

    sub.add_parser("run-stdin", help="Transcribe raw 16-bit mono PCM read from stdin")

    run_file = sub.add_parser("run-file", help="Stream a 16-bit PCM WAV file through a live session")
    run_file.add_argument("path", type=Path, help="WAV file to transcribe")
    run_file.add_argument(
        "--realtime",
        action="store_true",
        help="Pace frames at playback speed instead of feeding as fast as possible",
    )

    sub.add_parser("run-mic", help="Capture microphone audio and print live captions")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        return 0

    configure_logging(args.log_level, args.log_file)

    if args.command is None:
        parser.print_help()
        return 2

    try:
        settings = _load_settings_or_default(args.config)
    except ValueError as exc:
        print(f"Error: invalid settings in {args.config}: {exc}", flush=True)
        return 2

    if args.command == "check":
        binary, model = resolve_whisper_paths(settings.whisper)
        ok, reason = ensure_whisper_available(binary, model)
        if not ok:
            print(f"Error: {reason}", flush=True)
            return 2
        print(f"whisper binary: {binary}\nwhisper model: {model}", flush=True)
        return 0

    if args.command == "setup":
        return _run_setup(settings, model_name=args.model, force=args.force)

    if args.command == "run-stdin":
        runner = HeadlessStdinRunner(settings=settings)
    elif args.command == "run-file":
        runner = HeadlessFileRunner(settings=settings, path=args.path, realtime=args.realtime)
    elif args.command == "run-mic":
        runner = HeadlessMicRunner(settings=settings)
    else:
        parser.print_help()
        return 2

    try:
        return asyncio.run(runner.run())
    except RecognizerUnavailableError as exc:
        print(f"Error: {exc}", flush=True)
        return 2
    except KeyboardInterrupt:
        return 0


def _run_setup(settings: AppSettings, *, model_name: str | None, force: bool) -> int:
    whisper = settings.whisper
    if model_name:
        whisper = replace(whisper, model_name=model_name, model_path="")
    try:
        report = asyncio.run(ensure_whisper_setup(whisper, force=force))
    except (ModelDownloadError, OSError) as exc:
        print(f"Error: {exc}", flush=True)
        return 2
    except KeyboardInterrupt:
        return 1

    print(f"whisper binary: {report.binary} ({'found' if report.binary_found else 'missing'})", flush=True)
    print(f"whisper model: {report.model} ({'downloaded' if report.downloaded else 'present'})", flush=True)
    return 0 if report.ready else 2


def _load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


if __name__ == "__main__":
    raise SystemExit(main())
