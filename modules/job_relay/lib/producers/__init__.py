# job_relay/producers/__init__.py
from __future__ import annotations

# Importing the modules registers their producer classes.
from . import json_feed, stub
from .base import BaseProducer, ProducerError
from .registry import all_kinds, get, register

__all__ = ["BaseProducer", "ProducerError", "all_kinds", "get", "json_feed", "register", "stub"]
