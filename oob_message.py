"""Cursor over a received Q3 out-of-band datagram"""

import struct

from jk_errors import FramingError
from jk_protocol import OOB_MARKER_FMT, OOB_MARKER_VALUE

ENCODING = 'latin-1'


class OOBMessage:
    """Forward-only reader over one OOB payload

    the payload is never modified, only the read offset moves
    """

    def __init__(self, data, validate_marker=True):
        self.data = bytes(data)
        self.offset = 0
        if validate_marker:
            hlen = struct.calcsize(OOB_MARKER_FMT)
            if len(self.data) < hlen:
                raise FramingError(f'datagram too short: {len(self.data)} bytes')
            (marker, ) = struct.unpack(OOB_MARKER_FMT, self.data[:hlen])
            if marker != OOB_MARKER_VALUE:
                raise FramingError(f'missing OOB marker, received {marker:#010x}')
            self.offset = hlen

    def __len__(self):
        return len(self.data)

    def remaining(self):
        """number of bytes left to read"""
        return len(self.data) - self.offset

    def peek(self):
        """current byte, or None at end of message"""
        if self.offset >= len(self.data):
            return None
        return self.data[self.offset]

    def command(self):
        """first token after the marker, without moving the cursor"""
        rest = self.data[self.offset:]
        for delimiter in (b'\n', b' ', b'\\', b'\0'):
            rest = rest.split(delimiter, 1)[0]
        return rest.decode(ENCODING)

    def read_line(self):
        """read up to the next line feed (or the rest of the message)"""
        end = self.data.find(b'\n', self.offset)
        if end == -1:
            line = self.data[self.offset:]
            self.offset = len(self.data)
        else:
            line = self.data[self.offset:end]
            self.offset = end + 1
        return line.decode(ENCODING)

    def read_fixed(self, num_bytes):
        """read exactly num_bytes"""
        if num_bytes > self.remaining():
            raise FramingError(f'read of {num_bytes} bytes at offset '
                               f'{self.offset} runs past end ({len(self.data)})')
        chunk = self.data[self.offset:self.offset + num_bytes]
        self.offset += num_bytes
        return chunk.decode(ENCODING)

    def skip(self, num_bytes=1):
        """advance; False (and clamp to the end) if no data would be left"""
        if self.offset + num_bytes >= len(self.data):
            self.offset = len(self.data)
            return False
        self.offset += num_bytes
        return True

    def split_fixed_stride(self, chunk_size, stride, max_chunks=None):
        """take chunk_size bytes, skip stride bytes, repeat"""
        if chunk_size < 1 or stride < 0:
            raise ValueError(f'bad split: {chunk_size=} {stride=}')
        chunks = []
        while self.remaining() >= chunk_size:
            if max_chunks is not None and len(chunks) >= max_chunks:
                break
            chunks.append(self.data[self.offset:self.offset + chunk_size])
            self.offset = min(self.offset + chunk_size + stride, len(self.data))
        return chunks

    def __repr__(self):
        return f'<OOBMessage length={len(self.data)} offset={self.offset}>'
