"""
Log File Reader Module - Offset-based reads of a watched file

Handles:
- Reading from a byte offset to the current end of file
- Decoding with a per-encoding incremental decoder, UTF-8 by default
- Bounding the result to its last N lines
- A pool of decoders shared by every watch using the same encoding
"""
import asyncio
import codecs
import logging
import os
from typing import Dict, Optional

from LOGWATCH.errors import DecodeError, FileIOError


def tail_by_lines(content: str, max_lines: int) -> str:
    """Keep the last max_lines lines, max_lines <= 0 means no bound"""
    if max_lines <= 0:
        return content
    lines = content.split("\n")
    if len(lines) <= max_lines:
        return content
    return "\n".join(lines[-max_lines:])


class DecoderPool:
    """
    Reusable incremental decoders keyed by encoding name

    A decoder carries partial multi-byte sequences between calls, so it is
    reset before each logical read. Reads decode synchronously on the event
    loop thread, which keeps use of one decoder serialized.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._decoders: Dict[str, codecs.IncrementalDecoder] = {}
        self._unavailable = set()

    def get(self, encoding: Optional[str]) -> Optional[codecs.IncrementalDecoder]:
        """
        Get the pooled decoder for an encoding

        Returns:
            A decoder that was just reset, or None for no/unknown encoding
        """
        if not encoding:
            return None
        key = encoding.strip().lower()
        decoder = self._decoders.get(key)
        if decoder is not None:
            decoder.reset()
            return decoder
        if key in self._unavailable:
            return None
        try:
            decoder = codecs.getincrementaldecoder(key)(errors="replace")
        except LookupError as e:
            self._unavailable.add(key)
            self.logger.error(str(DecodeError(encoding, e)))
            return None
        self._decoders[key] = decoder
        return decoder

    def clear(self) -> None:
        self._decoders.clear()
        self._unavailable.clear()


def _read_span(file_path: str, offset: int) -> bytes:
    with open(file_path, "rb") as f:
        size = os.fstat(f.fileno()).st_size
        part_size = size - offset
        if part_size <= 0:
            return b""
        f.seek(offset)
        return f.read(part_size)


def decode_bytes(data: bytes, decoder: Optional[codecs.IncrementalDecoder]) -> str:
    if decoder is None:
        return data.decode("utf-8", errors="replace")
    decoder.reset()
    return decoder.decode(data, final=True)


class ContentReader:
    """Incremental reads for the watch coordinator"""

    def __init__(self, decoders: Optional[DecoderPool] = None):
        self.decoders = decoders or DecoderPool()

    async def read(self, file_path: str, offset: Optional[int] = None,
                   encoding: Optional[str] = None, tail_lines: int = 0) -> bytes:
        """
        Read a file from offset to its end

        Args:
            file_path: File to read
            offset: Bytes already consumed, None or negative means 0
            encoding: Text encoding, None for UTF-8
            tail_lines: Keep only the last N lines, 0 or less for everything

        Returns:
            The decoded text re-encoded as UTF-8

        Raises:
            FileIOError: If the file cannot be opened or read
        """
        if not offset or offset < 0:
            offset = 0
        try:
            data = await asyncio.to_thread(_read_span, file_path, offset)
        except OSError as e:
            raise FileIOError(file_path, e) from e
        if not data:
            return b""

        text = decode_bytes(data, self.decoders.get(encoding))
        text = tail_by_lines(text, tail_lines)
        return text.encode("utf-8")
