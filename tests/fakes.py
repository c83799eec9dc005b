# tests/fakes.py

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Callable, List, Optional

from app.sms import SMSResult


@dataclass
class SentSMS:
    to: str
    body: str


@dataclass
class FakeSMSClient:
    """
    Records every SMS instead of calling the provider.
    Set `fail_with` to make sends fail with that error, and `on_send` to run
    code while a send is in flight.
    """

    sent: List[SentSMS] = field(default_factory=list)
    fail_with: Optional[str] = None
    on_send: Optional[Callable[[str, str], None]] = None

    @property
    def is_configured(self) -> bool:
        return True

    def send_sms(self, to: str, body: str) -> SMSResult:
        if self.on_send:
            self.on_send(to, body)
        if self.fail_with:
            return SMSResult(success=False, error=self.fail_with)
        self.sent.append(SentSMS(to=to, body=body))
        return SMSResult(success=True, message_id=f"SM{len(self.sent):04d}")


class FakeChatModel:
    """
    Stand-in for the Groq chat model.

    - Captures the messages of every call
    - Replies with the queued texts in order, repeating the last one
    """

    def __init__(self, *replies: str) -> None:
        self.replies = list(replies) or ['{"parsed_tasks": [], "clarification_questions": []}']
        self.calls = []

    def invoke(self, messages):
        self.calls.append(messages)
        text = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return SimpleNamespace(content=text)
