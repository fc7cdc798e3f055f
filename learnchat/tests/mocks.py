from typing import List, Optional

import groq
import httpx

from learnchat.features.llm.client import Generation, GenerationError, TextGenerator


class FakeMessage:
    def __init__(self, content: Optional[str]):
        self.content = content


class FakeChoice:
    def __init__(self, content: Optional[str]):
        self.message = FakeMessage(content)


class FakeUsage:
    def __init__(self, prompt_tokens: int, completion_tokens: int):
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens


class FakeCompletion:
    def __init__(self, content: Optional[str], prompt_tokens: int = 120, completion_tokens: int = 30):
        self.choices = [FakeChoice(content)]
        self.usage = FakeUsage(prompt_tokens, completion_tokens)


class FakeCompletions:
    def __init__(self, content: Optional[str] = "Hello World!", error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls: List[dict] = []

    def create(self, *args, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return FakeCompletion(self.content)


class FakeChat:
    def __init__(self, completions: FakeCompletions):
        self.completions = completions


class FakeGroq:
    def __init__(self, api_key: str = "", content: Optional[str] = "Hello World!", error: Optional[Exception] = None):
        self.chat = FakeChat(FakeCompletions(content=content, error=error))


def connection_error() -> groq.APIConnectionError:
    return groq.APIConnectionError(request=httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions"))


class ScriptedGenerator(TextGenerator):
    """
    Replies from a script keyed by purpose; a purpose mapped to an
    exception raises it instead.
    """

    def __init__(self, replies: Optional[dict] = None, default: str = "Sure, here is an explanation."):
        super().__init__(client=object())
        self.replies = dict(replies or {})
        self.default = default
        self.calls: List[dict] = []

    def generate(self, *, model, system, messages, max_tokens, purpose="chat", temperature=None) -> Generation:
        self.calls.append({"model": model, "system": system, "messages": list(messages), "max_tokens": max_tokens, "purpose": purpose})
        reply = self.replies.get(purpose, self.default)
        if isinstance(reply, Exception):
            raise reply
        return Generation(text=reply, input_tokens=100, output_tokens=20)

    def purposes(self) -> List[str]:
        return [call["purpose"] for call in self.calls]


def failing_generator() -> ScriptedGenerator:
    error = GenerationError("Text generation failed: APIConnectionError")
    return ScriptedGenerator(
        replies={"chat": error, "compaction": error, "quiz": error, "title": error, "brainstorm_summary": error}
    )
