"""
Voice and text command console for HomePilot

This package turns spoken or typed instructions into smart-home device commands:

- Listening: explicit state machine over the microphone/recognizer lifecycle
- Wake word: segments transcripts and manages the awaiting-command window
- Routines: exact trigger phrases that skip intent classification
- Intent classification: OpenAI or Gemini in JSON mode (action / query / general)
- Target resolution: rooms, groups, "all lights", "kitchen fans", single devices
- Dispatch: one EXECUTE batch for immediate actions, timer service for deferred ones
- Queries: refresh-then-read device state answers
- Feedback: status text, result banner, MQTT telemetry and Piper speech

Key modules:
- config: Configuration management from environment variables
- listening: Conversation state, transition function and listening manager
- resolver: Target resolution and the class keyword table
- dispatcher: Action partitioning, execution and result aggregation
- orchestrator: The end-to-end command pipeline
"""

from __future__ import annotations

__all__ = [
    "config",
    "catalog",
    "smart_home",
    "listening",
    "wake_word",
    "routines",
    "intent",
    "resolver",
    "dispatcher",
    "scheduler",
    "query_responder",
    "audio",
    "wyoming",
    "recognizer",
    "speech",
    "feedback",
    "mqtt",
    "orchestrator",
]
