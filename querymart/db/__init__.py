"""Sink database models and session helpers."""

from .models import *  # noqa: F401,F403
from .session import Sink, create_sink_engine  # noqa: F401
