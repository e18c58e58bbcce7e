"""
Africa's Talking voice XML.

Every webhook answer is one <Response> document. Gather states wrap their
prompt with <GetDigits>, auto-advancing states end with a <Redirect> so
the provider fetches the next turn.
"""

from typing import Optional
from xml.sax.saxutils import escape, quoteattr


def say(text: str) -> str:
    return f"<Say>{escape(text)}</Say>"


def get_digits(
    prompt: str,
    callback_url: str,
    timeout: int = 6,
    num_digits: Optional[int] = 1,
    finish_on_key: Optional[str] = None
) -> str:
    """Prompt plus a digit-collection directive pointing at the DTMF webhook."""
    attrs = [f"timeout={quoteattr(str(timeout))}"]
    if finish_on_key:
        attrs.append(f"finishOnKey={quoteattr(finish_on_key)}")
    if num_digits:
        attrs.append(f"numDigits={quoteattr(str(num_digits))}")
    attrs.append(f"callbackUrl={quoteattr(callback_url)}")
    return (
        f"{say(prompt)}<GetDigits {' '.join(attrs)}>"
        f"{say('Enter your choice now.')}</GetDigits>"
    )


def redirect(url: str) -> str:
    return f"<Redirect>{escape(url)}</Redirect>"


def hangup() -> str:
    return "<Hangup/>"


def build_response(inner: str = "") -> str:
    return f'<?xml version="1.0" encoding="UTF-8"?><Response>{inner}</Response>'


def apology(text: str = "Sorry, there was an error. Please try again later.") -> str:
    """Universal fallback: apologise and end the call."""
    return build_response(say(text) + hangup())
