"""Pytest configuration and fixtures"""

import pytest
from hypothesis import settings, Verbosity

from fakes import (
    ConstantAnalysisProvider,
    FakeCapture,
    ManualClock,
    RecordingRewardsSink,
    ScriptedAudioHandle,
    ScriptedVideoHandle,
)
from speakcoach.session.bus import SessionBus
from speakcoach.session.context import Session, SessionContext
from speakcoach.session.controller import SessionController


# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=20, verbosity=Verbosity.normal)
settings.register_profile("debug", max_examples=10, verbosity=Verbosity.verbose)

# Use CI profile by default
settings.load_profile("ci")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def provider():
    return ConstantAnalysisProvider()


@pytest.fixture
def make_context(clock, provider):
    """Build a session context around scripted handles"""
    def _make(audio=None, video=None, transcriber=None, analysis=None, bus=None):
        context = SessionContext(
            Session(started_at=clock.now()),
            bus or SessionBus(),
            clock,
            analysis or provider,
            transcriber,
        )
        context.attach(audio or ScriptedAudioHandle([], hold_open=False),
                       video or ScriptedVideoHandle([], hold_open=False))
        return context
    return _make


@pytest.fixture
def make_controller(clock, provider):
    """Build a controller with the deadline disabled"""
    def _make(capture=None, transcriber=None, rewards=None, analysis=None, **kwargs):
        kwargs.setdefault("join_timeout", 2.0)
        kwargs.setdefault("max_duration", 0)
        return SessionController(
            capture=capture or FakeCapture(),
            analysis_provider=analysis or provider,
            transcription_provider=transcriber,
            rewards_sink=rewards if rewards is not None else RecordingRewardsSink(),
            clock=clock,
            **kwargs,
        )
    return _make

