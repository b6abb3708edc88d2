"""Incremental body reader with progress reporting and charset resolution.

Bytes are decoded chunk by chunk with an incremental decoder, so a
multi-megabyte catalog never sits in one synchronous decode pass.
"""

import codecs
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from feedrelay.config import settings
from feedrelay.ingest.errors import TransportError
from feedrelay.ingest.models import ProgressCallback

logger = logging.getLogger(__name__)

# Bytes buffered before choosing a decoder (enough for BOM + XML prolog)
SNIFF_BYTES = 512

XML_PROLOG_ENCODING = re.compile(
    rb'^\s*<\?xml[^>]*?encoding\s*=\s*["\']([A-Za-z0-9._:-]+)["\']'
)

BOMS = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


@dataclass
class StreamReadResult:
    """Decoded body plus transfer statistics."""
    text: str
    encoding: str
    bytes_received: int
    total_bytes: Optional[int]


def declared_length(response: httpx.Response) -> Optional[int]:
    """Content-Length as int, None when absent or garbage."""
    raw = response.headers.get("Content-Length")
    if raw and raw.strip().isdigit():
        return int(raw.strip())
    return None


def sniff_encoding(head: bytes) -> Optional[str]:
    """Encoding from a byte-order mark or the XML prolog, if any."""
    for bom, name in BOMS:
        if head.startswith(bom):
            return name
    match = XML_PROLOG_ENCODING.match(head)
    if match:
        return match.group(1).decode("ascii").lower()
    return None


def resolve_encoding(declared: Optional[str], head: bytes, default: str = "utf-8") -> str:
    """
    Pick the codec for a body.

    Order: transport charset, then BOM, then XML prolog, then default.
    Unknown codec names fall back to UTF-8.
    """
    sniffed = sniff_encoding(head)
    candidate = declared or sniffed or default

    try:
        codec = codecs.lookup(candidate)
    except LookupError:
        logger.warning(f"Unknown charset '{candidate}', falling back to utf-8")
        codec = codecs.lookup("utf-8")

    # Declared utf-8 with a BOM still needs the BOM stripped
    if codec.name == "utf-8" and head.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"
    return codec.name


class _ChunkDecoder:
    """Incremental decoder that degrades to UTF-8 instead of failing."""

    def __init__(self, encoding: str):
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="strict")

    def decode(self, data: bytes, final: bool = False) -> str:
        try:
            return self._decoder.decode(data, final)
        except UnicodeDecodeError as e:
            logger.warning(
                f"Decoding with {self.encoding} failed ({e.reason}), "
                f"continuing with utf-8"
            )
            # Bytes held back from the previous chunk belong to this one
            pending = self._decoder.getstate()[0]
            self.encoding = "utf-8"
            self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            return self._decoder.decode(pending + data, final)


class StreamProgressReader:
    """Reads a streamed httpx response into text while reporting progress."""

    def __init__(
        self,
        max_bytes: Optional[int] = None,
        default_encoding: Optional[str] = None,
    ):
        self.max_bytes = max_bytes or settings.max_feed_bytes
        self.default_encoding = default_encoding or settings.default_encoding

    async def read_text(
        self,
        response: httpx.Response,
        on_progress: Optional[ProgressCallback] = None,
        relay: Optional[str] = None,
    ) -> StreamReadResult:
        """
        Consume a streamed response body.

        Args:
            response: Response opened with ``client.stream(...)``
            on_progress: Called after every chunk with
                (percent or None, bytes loaded, bytes total or None). Loaded
                and total are wire bytes, so compressed bodies report against
                their Content-Length.
            relay: Relay name for error context

        Returns:
            StreamReadResult with decoded text

        Raises:
            TransportError: If the decoded body exceeds the byte ceiling or the stream breaks
        """
        total = declared_length(response)
        declared = response.charset_encoding
        received = 0
        body_size = 0
        head = bytearray()
        decoder: Optional[_ChunkDecoder] = None
        parts: list[str] = []

        try:
            async for chunk in response.aiter_bytes():
                received = response.num_bytes_downloaded
                if not chunk:
                    continue
                body_size += len(chunk)
                if body_size > self.max_bytes:
                    raise TransportError(
                        f"response exceeds {self.max_bytes} bytes", relay=relay
                    )

                if decoder is None:
                    head.extend(chunk)
                    if len(head) >= SNIFF_BYTES:
                        decoder = _ChunkDecoder(
                            resolve_encoding(declared, bytes(head), self.default_encoding)
                        )
                        parts.append(decoder.decode(bytes(head)))
                else:
                    parts.append(decoder.decode(chunk))

                if on_progress:
                    on_progress(self._percent(received, total), received, total)
        except httpx.HTTPError as e:
            raise TransportError(
                f"stream interrupted after {received} bytes: {type(e).__name__}",
                relay=relay,
            ) from e

        if decoder is None:
            # Body shorter than the sniff window
            decoder = _ChunkDecoder(
                resolve_encoding(declared, bytes(head), self.default_encoding)
            )
            parts.append(decoder.decode(bytes(head)))
        parts.append(decoder.decode(b"", final=True))
        received = response.num_bytes_downloaded

        return StreamReadResult(
            text="".join(parts),
            encoding=decoder.encoding,
            bytes_received=received,
            total_bytes=total,
        )

    @staticmethod
    def _percent(received: int, total: Optional[int]) -> Optional[float]:
        if not total:
            return None
        return min(received / total * 100.0, 100.0)


# Global instance
stream_reader = StreamProgressReader()
