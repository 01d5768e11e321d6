"""
TabScribe - tab audio recording with live speaker-attributed transcription.

Three contexts talk over a message bus:
  - coordinator: recording lifecycle and persisted state
  - capture worker: audio capture, mixing, encoding and the streaming client
  - UI: receives notifications and sends commands
"""

__version__ = "1.0.0"
