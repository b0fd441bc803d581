from .email import EmailSender
from .locales import format_date, negotiate_locales, translate
from .report import email_cta_href, report_subject, unsubscribe_url

__all__ = [
    "EmailSender",
    "email_cta_href",
    "format_date",
    "negotiate_locales",
    "report_subject",
    "translate",
    "unsubscribe_url",
]
