"""Line-delimited JSON protocol spoken by agent processes on stdout."""

from swarmrun.protocol.stream import StreamOutcome, StreamReader, decode_line

__all__ = ["StreamOutcome", "StreamReader", "decode_line"]
