"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for the STI framing protocol and simulator defaults.

Rules:
- If changing a value changes wire behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, FrozenSet

# =============================================================================
# Markers
# =============================================================================

STI_HEAD: Final[int] = 1234567890
# Negated head, stored as an unsigned 32-bit big-endian word
STI_TAIL: Final[int] = (-STI_HEAD) & 0xFFFFFFFF

U32_MAX: Final[int] = 2**32 - 1

# =============================================================================
# Layout (32-bit big-endian words)
# =============================================================================

UNIT: Final[int] = 4

CONTROL_FRAME_BYTES: Final[int] = 16 * UNIT
ENVELOPE_HEADER_BYTES: Final[int] = 16 * UNIT
ENVELOPE_TAIL_BYTES: Final[int] = UNIT
ENVELOPE_OVERHEAD_BYTES: Final[int] = ENVELOPE_HEADER_BYTES + ENVELOPE_TAIL_BYTES

# Envelope word indices
ENV_HEAD_IDX: Final[int] = 0
ENV_LENGTH_IDX: Final[int] = 1
ENV_TIME_FIELD0_IDX: Final[int] = 3
ENV_TIME_FIELD1_IDX: Final[int] = 4
ENV_SEQUENCE_IDX: Final[int] = 5
ENV_PAYLOAD_LEN_IDX: Final[int] = 10

# Control frame word indices
CTRL_HEAD_IDX: Final[int] = 0
CTRL_LENGTH_IDX: Final[int] = 1
CTRL_CHANNEL_IDX: Final[int] = 3
CTRL_DATA_FLOW_IDX: Final[int] = 5  # byte offset 20
CTRL_TAIL_IDX: Final[int] = 15

# =============================================================================
# Data-flow selectors
# =============================================================================

DATA_FLOW_START: Final[FrozenSet[int]] = frozenset({0, 1, 2, 4, 5, 6})
DATA_FLOW_NOOP: Final[int] = 0x80

# =============================================================================
# Time codes
# =============================================================================

TIME_CODE_MS: Final[int] = 0  # seconds + milliseconds
TIME_CODE_US: Final[int] = 3  # seconds + microseconds
SUPPORTED_TIME_CODES: Final[FrozenSet[int]] = frozenset({TIME_CODE_MS, TIME_CODE_US})

SECONDS_PER_YEAR_MAX: Final[int] = 366 * 86_400

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_FPS: Final[int] = 2
DEFAULT_TM_CHANNEL: Final[int] = 0
DEFAULT_PORT: Final[int] = 3070
DEFAULT_HOST: Final[str] = "0.0.0.0"
DEFAULT_TIME_CODE: Final[int] = TIME_CODE_MS
DEFAULT_FRAME_OFFSET: Final[int] = 0

# Frames buffered per connection between generators and the socket writer
OUTBOUND_QUEUE_MAX_FRAMES: Final[int] = 64

# Receiver refuses envelopes announcing a larger payload
RECEIVER_MAX_PAYLOAD_BYTES: Final[int] = 1 << 20

# Teardown: how long generators get to observe cancellation before being
# cancelled outright
GENERATOR_STOP_TIMEOUT_S: Final[float] = 1.0

# Closed-session outcomes kept by the listener for the status API
RECENT_RESULTS_MAX: Final[int] = 32
