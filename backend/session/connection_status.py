"""
Connection status tracking for TM sessions.

Pure data owned by TMSession; exposed through the status API.
"""
from enum import Enum

class ConnectionStatus(Enum):
    """
    Connection lifecycle status.
    """
    UP = "UP"              # Reading control frames, generators may be running
    CLOSING = "CLOSING"    # Teardown in progress, generators draining
    DOWN = "DOWN"          # Connection released
