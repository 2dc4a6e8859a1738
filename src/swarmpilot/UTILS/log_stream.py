"""
Decoding of engine log payloads into text.

The docker SDK already strips the multiplexed stream headers from non-TTY
output, so payloads arrive as plain bytes or as an iterable of byte chunks.
"""
from typing import Iterable, Union

LogPayload = Union[bytes, bytearray, str, Iterable[bytes], None]


def decode_log_stream(payload: LogPayload) -> str:
    """
    Turns whatever the engine returned for a logs call into a string.

    :param payload: Raw bytes, an iterable of byte chunks, text, or None.
    :return: UTF-8 decoded text with invalid sequences replaced.
    """
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        data = bytes(payload)
    else:
        # chunks may split multi-byte characters, so join before decoding
        data = b"".join(
            chunk.encode() if isinstance(chunk, str) else bytes(chunk)
            for chunk in payload
        )
    return data.decode("utf-8", errors="replace")
