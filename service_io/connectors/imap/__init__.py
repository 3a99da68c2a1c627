from .client import ImapClient, ImapProtocolError
from .input import ImapInput
from .session import ImapSession

__all__ = ['ImapClient', 'ImapInput', 'ImapProtocolError', 'ImapSession']
