"""Streaming reader for the file part of a multipart/form-data request.

FastAPI's ``UploadFile`` only reaches the handler after Starlette has spooled
the whole body, which defeats a size ceiling. This reader drives
python-multipart directly from the ASGI receive stream and hands out the file
part as an async iterator of chunks, so bytes are pulled from the network only
as fast as the blob store writes them and reading stops as soon as the
consumer stops iterating.
"""
import logging
from dataclasses import dataclass
from typing import AsyncIterator

import python_multipart
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header

from app.services.errors import MalformedUpload, MissingFile

logger = logging.getLogger(__name__)

_HEADERS = "headers"
_DATA = "data"
_PART_END = "part_end"


def _decode_header(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


@dataclass
class FilePart:
    """A file field whose headers have been read and whose body is still on the wire."""

    field_name: str
    filename: str
    content_type: str | None
    chunks: AsyncIterator[bytes]


class MultipartFileReader:
    """Pulls events out of a multipart body one network chunk at a time."""

    def __init__(self, content_type: str | None, stream: AsyncIterator[bytes]):
        mime, params = parse_options_header(content_type or "")
        boundary = params.get(b"boundary")
        if mime != b"multipart/form-data" or not boundary:
            raise MissingFile()

        self._stream = stream
        self._pending: list[tuple[str, object]] = []
        self._headers: dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""
        self._parser = python_multipart.MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
            },
        )
        self._events = self._iter_events()

    # Parser callbacks run synchronously inside parser.write(); they only queue events.

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        self._pending.append((_HEADERS, self._headers))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._pending.append((_DATA, bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._pending.append((_PART_END, None))

    async def _iter_events(self) -> AsyncIterator[tuple[str, object]]:
        async for chunk in self._stream:
            if not chunk:
                continue
            try:
                self._parser.write(chunk)
            except MultipartParseError as e:
                logger.info("Rejected malformed multipart body: %s", e)
                raise MalformedUpload() from e
            events, self._pending = self._pending, []
            for event in events:
                yield event
        self._parser.finalize()
        events, self._pending = self._pending, []
        for event in events:
            yield event

    async def find_file(self, field_name: str) -> FilePart | None:
        """Advance to the named file field. Returns None if the body has none.

        Parts before the file field (plain form fields, other files) are
        skipped without being kept in memory.
        """
        async for kind, payload in self._events:
            if kind != _HEADERS:
                continue
            disposition = payload.get(b"content-disposition")
            if not disposition:
                continue
            _, options = parse_options_header(disposition)
            name = _decode_header(options.get(b"name", b""))
            filename = _decode_header(options.get(b"filename", b""))
            if name != field_name or not filename:
                continue
            content_type = payload.get(b"content-type")
            return FilePart(
                field_name=name,
                filename=filename,
                content_type=_decode_header(content_type) if content_type else None,
                chunks=self._part_chunks(),
            )
        return None

    async def _part_chunks(self) -> AsyncIterator[bytes]:
        async for kind, payload in self._events:
            if kind == _DATA:
                if payload:
                    yield payload
            elif kind == _PART_END:
                return
        raise MalformedUpload("upload body ended before the file was complete")
