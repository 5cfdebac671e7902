"""Realtime fan-out of chat events and staff alerts.

Components publish through the RealtimeFanout interface they are given;
the WebSocket ConnectionManager is the production implementation.
"""
from .fanout import RealtimeFanout, NullFanout
from .sequencer import BookingSequencer
from .manager import BookingRoom, ConnectionManager, manager

__all__ = [
    'RealtimeFanout',
    'NullFanout',
    'BookingSequencer',
    'BookingRoom',
    'ConnectionManager',
    'manager',
]
