from __future__ import annotations
from dataclasses import dataclass, field, replace as _replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Tuple


def _frozen_mapping(value: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class Message:
    """Common data shared among inputs, outputs and services.

    On the input side ``origin`` is who sent the message; on the output side
    it is the recipient. ``key`` selects the service the message is for.
    """

    origin: str = ''
    key: str = ''
    args: Tuple[str, ...] = ()
    body: str = ''
    attachments: Mapping[str, bytes] = field(default_factory=dict)
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, 'args', tuple(self.args))
        object.__setattr__(self, 'attachments', _frozen_mapping(self.attachments))
        object.__setattr__(self, 'metadata', _frozen_mapping(self.metadata))

    def __hash__(self) -> int:
        return hash((self.origin, self.key, self.args, self.body,
                     frozenset(self.attachments.items()), frozenset(self.metadata.items())))

    @classmethod
    def response(cls, request: 'Message', **fields: Any) -> 'Message':
        """Empty message addressed back to the sender of ``request``, same key."""
        return cls(origin=request.origin, key=request.key, **fields)

    @classmethod
    def from_subject(cls, origin: str, subject: str, **fields: Any) -> 'Message':
        """First word of the subject is the key, the following words are args."""
        words = (subject or '').split()
        return cls(origin=origin, key=words[0] if words else '', args=tuple(words[1:]), **fields)

    @property
    def subject(self) -> str:
        return ' '.join([self.key, *self.args]).strip()

    def replace(self, **changes: Any) -> 'Message':
        return _replace(self, **changes)

    def with_args(self, args: Iterable[str]) -> 'Message':
        return self.replace(args=tuple(args))

    def with_body(self, body: str) -> 'Message':
        return self.replace(body=body)


def lowercase_first_char(message: Message) -> Message:
    """Lowercase the first letter of the key.

    Email clients usually capitalise the first letter of the subject, so
    ``S-echo`` would never match a service registered as ``s-echo``.
    """
    if not message.key:
        return message
    return message.replace(key=message.key[0].lower() + message.key[1:])
