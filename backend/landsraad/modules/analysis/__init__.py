"""Landsraad screenshot analysis.

  Service    — model fallback loop, concurrent batch fan-out
  Client     — one chat-completion call per batch, retry with backoff
  Normalizer — JSON extraction, TaskRecord coercion, per-house dedupe
  Prompt     — instruction prompt, loaded and sanitized once per process
"""
