from .channel import QueueInput, QueueOutput
from .imap import ImapClient, ImapInput, ImapSession
from .mail import email_to_message, message_to_email
from .mail_servers import detect_imap_server, detect_smtp_server
from .smtp import SmtpOutput
from .stdin import UserStdin
from .stdout import DebugStdout

__all__ = [
    'DebugStdout',
    'ImapClient',
    'ImapInput',
    'ImapSession',
    'QueueInput',
    'QueueOutput',
    'SmtpOutput',
    'UserStdin',
    'detect_imap_server',
    'detect_smtp_server',
    'email_to_message',
    'message_to_email',
]
