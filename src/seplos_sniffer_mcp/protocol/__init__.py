"""Protocol layer: stream framing, CRC validation, and frame decoding."""

from .framing import FrameSynchronizer, FrameType, RawFrame, build_frame, validate_crc
from .parser import AlarmStatus, BmsRecord, CellDetail, PackTelemetry, decode_frame, parse_frame
