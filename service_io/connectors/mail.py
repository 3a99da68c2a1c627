"""Conversion between RFC822 mail and Message.

Incoming: the first word of the subject is the key, the other words are the
args, the first text/plain part is the body, parts with a filename are
attachments and the ``From`` address is the origin. Outgoing mail is built the
other way round, addressed to the message origin.
"""

from __future__ import annotations
import email
from email.header import decode_header, make_header
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, parseaddr
from typing import Dict, Optional

from service_io.errors import DeliveryError, ParseError
from service_io.message import Message

REPLY_HEADERS = ('In-Reply-To', 'References')


def decode_value(value) -> str:
    if value is None:
        return ''
    try:
        return str(make_header(decode_header(str(value))))
    except (UnicodeDecodeError, LookupError, ValueError):
        parts = []
        for chunk, charset in decode_header(str(value)):
            if isinstance(chunk, bytes):
                chunk = chunk.decode(charset or 'utf-8', errors='ignore')
            parts.append(chunk)
        return ''.join(parts)


def _decode_payload(part) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ''
    charset = part.get_content_charset() or 'utf-8'
    try:
        return payload.decode(charset, errors='ignore')
    except LookupError:
        return payload.decode('utf-8', errors='ignore')


def email_to_message(raw: bytes) -> Message:
    """Parse a raw mail. Raises ParseError if it has no usable sender."""
    try:
        msg = email.message_from_bytes(raw)
    except Exception as e:
        raise ParseError(f"Unreadable mail: {e}") from e

    _, origin = parseaddr(decode_value(msg.get('From')))
    if not origin:
        raise ParseError("Mail without a From address", subject=decode_value(msg.get('Subject')))

    body = ''
    attachments: Dict[str, bytes] = {}
    for part in msg.walk():
        if part.is_multipart():
            continue
        filename = part.get_filename()
        if filename:
            attachments[decode_value(filename)] = part.get_payload(decode=True) or b''
        elif part.get_content_type() == 'text/plain' and not body:
            body = _decode_payload(part)

    metadata: Dict[str, str] = {}
    for name, value in msg.items():
        metadata.setdefault(name, decode_value(value))

    return Message.from_subject(
        origin,
        decode_value(msg.get('Subject')),
        body=body,
        attachments=attachments,
        metadata=metadata,
    )


def message_to_email(message: Message, sender: str, sender_name: Optional[str] = None) -> MIMEMultipart:
    """Build the outgoing mail for ``message``. Raises DeliveryError for a bad recipient."""
    _, recipient = parseaddr(message.origin)
    if not recipient or '@' not in recipient:
        raise DeliveryError(f"Invalid recipient: {message.origin!r}")

    mime = MIMEMultipart()
    mime['From'] = formataddr((sender_name, sender)) if sender_name else sender
    mime['To'] = recipient
    mime['Subject'] = message.subject
    for name in REPLY_HEADERS:
        if message.metadata.get(name):
            mime[name] = message.metadata[name]

    mime.attach(MIMEText(message.body, 'plain', 'utf-8'))
    for filename, data in message.attachments.items():
        part = MIMEApplication(data, Name=filename)
        part['Content-Disposition'] = f'attachment; filename="{filename}"'
        mime.attach(part)
    return mime
