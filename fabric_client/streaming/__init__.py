from fabric_client.streaming.consumer import ChatStream, StreamConsumer
from fabric_client.streaming.framer import SSEFrame, iter_frames, iter_lines, sse_frames

__all__ = ["ChatStream", "StreamConsumer", "SSEFrame", "iter_frames", "iter_lines", "sse_frames"]
