"""Incremental splitting of upstream byte streams into parsed units."""

import codecs
from dataclasses import dataclass, field
from typing import Any, Dict, List

import orjson

from gateway.config.log import get_logger
from gateway.providers.types import StreamFraming

DONE_SENTINEL = '[DONE]'


@dataclass(slots=True)
class Frame:
    data: Dict[str, Any] = field(default_factory=dict)
    done: bool = False


class StreamDecoder:
    """Turns raw bytes into frames. UTF-8 sequences and lines split across chunks are carried over."""

    def __init__(self, framing: StreamFraming, logger=None):
        self.framing = framing
        self.logger = logger or get_logger(__name__)
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self._buffer = ''

    def feed(self, chunk: bytes) -> List[Frame]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split('\n')
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> List[Frame]:
        """Parse whatever is left once the reader ends."""
        remaining = self._buffer + self._decoder.decode(b'', final=True)
        self._buffer = ''
        return self._parse_lines([remaining]) if remaining.strip() else []

    def _parse_lines(self, lines: List[str]) -> List[Frame]:
        frames = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            if self.framing == 'sse':
                if not line.startswith('data:'):
                    continue
                line = line[5:].strip()
                if line == DONE_SENTINEL:
                    frames.append(Frame(done=True))
                    continue
            frame = self._decode(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def _decode(self, payload: str) -> Frame | None:
        try:
            data = orjson.loads(payload)
        except orjson.JSONDecodeError:
            self.logger.debug('Skipping undecodable stream unit', unit=payload[:200])
            return None
        if not isinstance(data, dict):
            return None
        return Frame(data=data)
