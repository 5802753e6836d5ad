"""Orchestrators coordinating one send attempt (interactive, hook and background)."""

from vibelog.orchestrators.background import BackgroundOutcome, BackgroundSendOrchestrator
from vibelog.orchestrators.hook import HookOutcome, HookSendOrchestrator
from vibelog.orchestrators.send import SendOrchestrator

__all__ = [
    'BackgroundOutcome',
    'BackgroundSendOrchestrator',
    'HookOutcome',
    'HookSendOrchestrator',
    'SendOrchestrator',
]
