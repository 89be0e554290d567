"""Live incremental speech-to-text over whisper.cpp."""

__version__ = "0.1.0"
