"""Well-known IMAP/SMTP hosts by address domain."""

IMAP_SERVERS = {
    'gmail.com': 'imap.gmail.com',
    'outlook.com': 'outlook.office365.com',
    'hotmail.com': 'outlook.office365.com',
    'yahoo.com': 'imap.mail.yahoo.com',
    'wp.pl': 'imap.wp.pl',
    'o2.pl': 'imap.o2.pl',
    'interia.pl': 'imap.poczta.interia.pl',
}

SMTP_SERVERS = {
    'gmail.com': 'smtp.gmail.com',
    'outlook.com': 'smtp.office365.com',
    'hotmail.com': 'smtp.office365.com',
    'yahoo.com': 'smtp.mail.yahoo.com',
    'wp.pl': 'smtp.wp.pl',
    'o2.pl': 'smtp.o2.pl',
    'interia.pl': 'smtp.poczta.interia.pl',
}


def _domain(email_address: str) -> str:
    if '@' not in email_address:
        raise ValueError(f"Not an email address: {email_address!r}")
    return email_address.rsplit('@', 1)[1].strip().lower()


def detect_imap_server(email_address: str) -> str:
    domain = _domain(email_address)
    return IMAP_SERVERS.get(domain, f'imap.{domain}')


def detect_smtp_server(email_address: str) -> str:
    domain = _domain(email_address)
    return SMTP_SERVERS.get(domain, f'smtp.{domain}')
