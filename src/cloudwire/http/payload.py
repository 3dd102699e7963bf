"""Request and response bodies."""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import BinaryIO, Optional
from urllib.parse import parse_qsl, urlencode

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(frozen=True)
class ContentMetadata:
    """
    Metadata describing a payload.

    Attributes:
        content_type: MIME type of the body
        content_length: Length in bytes, if known
        content_md5: Raw (not encoded) MD5 digest of the body, if known
    """

    content_type: Optional[str] = None
    content_length: Optional[int] = None
    content_md5: Optional[bytes] = None


class Payload(ABC):
    """
    Base class for request and response bodies.

    A payload is *repeatable* when ``open_stream()`` can be called any
    number of times and each call starts from the beginning. Only
    repeatable payloads can be safely re-sent by a retry.
    """

    is_repeatable = True

    def __init__(self, metadata: Optional[ContentMetadata] = None) -> None:
        self.metadata = metadata or ContentMetadata()

    @property
    @abstractmethod
    def raw_content(self) -> object:
        """The object this payload was built from."""
        ...

    @abstractmethod
    def open_stream(self) -> BinaryIO:
        """Open a stream over the payload bytes."""
        ...

    def read_bytes(self) -> bytes:
        """Read the whole payload. Only valid for repeatable payloads."""
        if not self.is_repeatable:
            raise ValueError(f"payload is not repeatable: {self!r}")
        return self.open_stream().read()

    def with_metadata(self, **changes: object) -> Payload:
        """Return a copy of this payload with updated content metadata."""
        clone = self._copy()
        clone.metadata = replace(self.metadata, **changes)
        return clone

    @abstractmethod
    def _copy(self) -> Payload:
        ...


class ByteArrayPayload(Payload):
    """Repeatable payload backed by an in-memory byte string."""

    def __init__(self, content: bytes, metadata: Optional[ContentMetadata] = None) -> None:
        metadata = metadata or ContentMetadata()
        if metadata.content_length is None:
            metadata = replace(metadata, content_length=len(content))
        super().__init__(metadata)
        self._content = content

    @property
    def raw_content(self) -> bytes:
        return self._content

    def open_stream(self) -> BinaryIO:
        return io.BytesIO(self._content)

    def _copy(self) -> ByteArrayPayload:
        return ByteArrayPayload(self._content, self.metadata)

    def __repr__(self) -> str:
        return f"ByteArrayPayload(length={len(self._content)}, type={self.metadata.content_type!r})"


class StringPayload(ByteArrayPayload):
    """Repeatable payload built from text, encoded as UTF-8."""

    def __init__(self, text: str, metadata: Optional[ContentMetadata] = None) -> None:
        super().__init__(text.encode("utf-8"), metadata)
        self._text = text

    @property
    def raw_content(self) -> str:  # type: ignore[override]
        return self._text

    def _copy(self) -> StringPayload:
        return StringPayload(self._text, self.metadata)

    def __repr__(self) -> str:
        return f"StringPayload({self._text[:64]!r})"


class FormPayload(StringPayload):
    """
    URL-encoded form body.

    The raw content is the encoded form string, e.g. ``Action=ListUsers&Version=2010-05-08``.
    Parameter order is preserved.
    """

    def __init__(self, params: list[tuple[str, str]], metadata: Optional[ContentMetadata] = None) -> None:
        metadata = metadata or ContentMetadata(content_type=FORM_CONTENT_TYPE)
        self.params = list(params)
        super().__init__(urlencode(self.params, safe="/"), metadata)

    @classmethod
    def parse(cls, form: str, content_type: str = FORM_CONTENT_TYPE) -> FormPayload:
        """Build a form payload from an already encoded form string."""
        return cls(parse_qsl(form, keep_blank_values=True), ContentMetadata(content_type=content_type))

    def decoded_params(self) -> dict[str, list[str]]:
        """Return the form parameters as a name to values multimap."""
        decoded: dict[str, list[str]] = {}
        for name, value in self.params:
            decoded.setdefault(name, []).append(value)
        return decoded

    def adding_param(self, name: str, value: str) -> FormPayload:
        """Return a new form with one more parameter appended."""
        # content_length must be recomputed for the longer body
        metadata = replace(self.metadata, content_length=None, content_md5=None)
        return FormPayload([*self.params, (name, value)], metadata)

    def _copy(self) -> FormPayload:
        return FormPayload(self.params, self.metadata)

    def __repr__(self) -> str:
        return f"FormPayload({self.raw_content!r})"


class InputStreamPayload(Payload):
    """
    Payload over a caller-owned stream.

    Not repeatable: ``open_stream()`` hands back the same stream every time,
    positioned wherever the last reader left it. The payload never closes
    the stream; its owner does.
    """

    is_repeatable = False

    def __init__(self, stream: BinaryIO, metadata: Optional[ContentMetadata] = None) -> None:
        super().__init__(metadata)
        self._stream = stream

    @property
    def raw_content(self) -> BinaryIO:
        return self._stream

    def open_stream(self) -> BinaryIO:
        return self._stream

    def _copy(self) -> InputStreamPayload:
        return InputStreamPayload(self._stream, self.metadata)

    def __repr__(self) -> str:
        return f"InputStreamPayload({self._stream!r})"
