"""测试 ConversationSession 的历史、预算裁剪与失败重试。"""

import json

import pytest

from gpthing.agents.session import ConversationSession, SessionConfig
from gpthing.domain.exceptions import ConfigurationError, TransportError, UpstreamError
from gpthing.providers.base import TransportResponse


class FakeTokenizer:
    """按空白切分计数。"""

    def encode(self, text):
        return text.split()


class FakeTransport:
    def __init__(self, replies=None):
        self.calls = []
        self._replies = list(replies or [])

    def send(self, url, headers, body):
        self.calls.append({"url": url, "headers": dict(headers), "body": body})
        if self._replies:
            reply = self._replies.pop(0)
        else:
            reply = _ok("ok")
        if isinstance(reply, Exception):
            raise reply
        return reply


def _ok(content):
    payload = {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1,
        "model": "gpt-3.5-turbo",
        "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }
    return TransportResponse(ok=True, status_code=200, text=json.dumps(payload))


def _session(transport=None, retry_decider=None, **config):
    cfg = SessionConfig(**config)
    return ConversationSession(
        "sk-test",
        config=cfg,
        tokenizer=FakeTokenizer(),
        transport=transport or FakeTransport(),
        retry_decider=retry_decider,
    )


def _sent_messages(call):
    return json.loads(call["body"])["messages"]


def test_missing_api_key_raises_configuration_error():
    with pytest.raises(ConfigurationError) as exc:
        ConversationSession("", tokenizer=FakeTokenizer(), transport=FakeTransport())
    assert exc.value.code == "MISSING_API_KEY"


def test_construct_seeds_single_resolved_system_message():
    s = ConversationSession(
        "sk-test",
        prompt_template="${Message}",
        sys_prompt_template="You are $GirlName talking to ${UserName}.",
        persona_name="Ava",
        user_name="Bob",
        tokenizer=FakeTokenizer(),
        transport=FakeTransport(),
    )
    assert len(s.history) == 1
    assert s.history[0].role == "system"
    assert s.history[0].content == "You are Ava talking to Bob."


def test_post_returns_reply_and_appends_raw_user_text():
    transport = FakeTransport([_ok("hi there")])
    s = _session(transport, prompt_template="Say as $GirlName: ${Message}", persona_name="Ava")
    reply = s.post("hello")

    assert reply == "hi there"
    assert [m.role for m in s.history] == ["system", "user", "assistant"]
    assert s.history[1].content == "hello"
    assert s.history[2].content == "hi there"
    sent = _sent_messages(transport.calls[0])
    assert sent[-1] == {"role": "user", "content": "Say as Ava: hello"}


def test_post_without_message_placeholder_concatenates():
    transport = FakeTransport()
    s = _session(transport, prompt_template="Be nice.")
    s.post("hello")
    assert _sent_messages(transport.calls[0])[-1]["content"] == "Be nice.\nhello"


def test_request_payload_and_headers():
    transport = FakeTransport()
    s = _session(transport, max_tokens=256, temperature=0.5, model="gpt-4")
    s.params.top_p = 0.9
    s.post("hello")

    call = transport.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["headers"]["Accept"] == "application/json"
    payload = json.loads(call["body"])
    assert payload["model"] == "gpt-4"
    assert payload["max_tokens"] == 256
    assert payload["temperature"] == 0.5
    assert payload["top_p"] == 0.9
    assert payload["frequency_penalty"] == 1.0
    assert payload["presence_penalty"] == 1.0


def test_no_eviction_when_under_budget():
    # limit = 2730 - 256 = 2474，历史远小于 2000 token
    s = _session(max_tokens=256, context_ceiling=2730, safety_margin=350)
    for i in range(20):
        before = len(s.history)
        s.post(f"short message number {i}")
        assert len(s.history) == before + 2
    assert len(s.history) == 41


def test_long_turns_force_eviction_oldest_first():
    transport = FakeTransport()
    s = _session(
        transport,
        prompt_template="${Message}",
        max_tokens=100,
        context_ceiling=1000,
        safety_margin=50,
    )
    appended = []
    for i in range(50):
        text = " ".join([f"w{i}"] * 200)
        s.post(text)
        appended.extend([("user", text), ("assistant", "ok")])
        history = s.history
        assert history[0].role == "system"
        tail = [(m.role, m.content) for m in history[1:]]
        # 剩余部分是完整序列的后缀：只删最早的，且相对顺序不变
        assert tail == appended[len(appended) - len(tail):]

    assert len(s.history) < 1 + 2 * 50
    for call in transport.calls:
        sent = _sent_messages(call)
        assert sent[0]["role"] == "system"


def test_over_budget_with_only_system_message_sends_anyway():
    transport = FakeTransport()
    s = _session(transport, prompt_template="${Message}", max_tokens=10, context_ceiling=50, safety_margin=5)
    reply = s.post(" ".join(["x"] * 500))
    assert reply == "ok"
    assert len(transport.calls) == 1
    assert [m["role"] for m in _sent_messages(transport.calls[0])] == ["system", "user"]


def test_transport_failure_declined_returns_empty_and_keeps_user_turn():
    transport = FakeTransport([TransportError(code="NETWORK_ERROR", message="timed out")])
    seen = []

    def decline(err):
        seen.append(err)
        return False

    s = _session(transport, retry_decider=decline)
    assert s.post("hello") == ""
    assert [(m.role, m.content) for m in s.history[1:]] == [("user", "hello")]
    assert isinstance(seen[0], TransportError)


def test_retry_resends_identical_body():
    transport = FakeTransport([
        TransportError(code="NETWORK_ERROR", message="reset by peer"),
        TransportResponse(ok=False, status_code=500, text='{"error": "boom"}'),
        _ok("finally"),
    ])
    errors = []

    def accept(err):
        errors.append(err)
        return True

    s = _session(transport, retry_decider=accept)
    assert s.post("hello") == "finally"
    assert len(transport.calls) == 3
    assert len({c["body"] for c in transport.calls}) == 1
    assert isinstance(errors[1], UpstreamError)
    assert errors[1].http_status == 500
    assert errors[1].extra["body"] == '{"error": "boom"}'
    assert [m.role for m in s.history] == ["system", "user", "assistant"]


def test_upstream_error_without_decider_does_not_retry():
    transport = FakeTransport([TransportResponse(ok=False, status_code=401, text="unauthorized")])
    s = _session(transport)
    assert s.post("hello") == ""
    assert len(transport.calls) == 1


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        json.dumps({"id": "x", "choices": []}),
        json.dumps({"id": "x"}),
        json.dumps(["unexpected"]),
        json.dumps({"choices": [{"message": "hi"}]}),
        json.dumps({"usage": [1], "choices": []}),
        json.dumps({"choices": [{"message": {"content": 5}}]}),
    ],
)
def test_malformed_response_degrades_to_empty_reply(text):
    transport = FakeTransport([TransportResponse(ok=True, status_code=200, text=text)])
    s = _session(transport)
    assert s.post("hello") == ""
    assert s.history[-1].role == "assistant"
    assert s.history[-1].content == ""


def test_reset_applies_current_parameters():
    s = _session(sys_prompt_template="I am $GirlName.", persona_name="Ava")
    s.post("hello")
    assert s.history[0].content == "I am Ava."

    s.params.persona_name = "Zoe"
    assert s.history[0].content == "I am Ava."
    s.reset()
    assert len(s.history) == 1
    assert s.history[0].role == "system"
    assert s.history[0].content == "I am Zoe."


def test_reset_updates_turn_template():
    transport = FakeTransport()
    s = _session(transport, prompt_template="$GirlName hears: $Message", persona_name="Ava")
    s.params.persona_name = "Zoe"
    s.post("one")
    assert _sent_messages(transport.calls[0])[-1]["content"] == "Ava hears: one"
    s.reset()
    s.post("two")
    assert _sent_messages(transport.calls[1])[-1]["content"] == "Zoe hears: two"


def test_system_prompt_receives_prompt_placeholder():
    s = _session(
        prompt_template="Reply as $GirlName.",
        sys_prompt_template="Rules: $Prompt",
        persona_name="Ava",
    )
    assert s.system_prompt == "Rules: Reply as Ava."


def test_parameter_changes_apply_to_next_request():
    transport = FakeTransport()
    s = _session(transport)
    s.post("one")
    s.params.max_tokens = 64
    s.params.temperature = 0.2
    s.post("two")
    second = json.loads(transport.calls[1]["body"])
    assert second["max_tokens"] == 64
    assert second["temperature"] == 0.2


def test_history_view_is_a_copy():
    s = _session()
    view = s.history
    s.post("hello")
    assert len(view) == 1
    assert len(s.history) == 3


def test_non_string_content_does_not_break_later_turns():
    bad = json.dumps({"choices": [{"message": {"role": "assistant", "content": 5}}]})
    transport = FakeTransport([TransportResponse(ok=True, status_code=200, text=bad), _ok("fine")])
    s = _session(transport)
    assert s.post("hello") == ""
    assert s.post("again") == "fine"
    assert [m.content for m in s.history][1:] == ["hello", "", "again", "fine"]


def test_name_values_are_not_rescanned_for_message():
    transport = FakeTransport()
    s = _session(transport, prompt_template="$GirlName says: $Message", persona_name="Mr $Message")
    s.post("hello")
    assert _sent_messages(transport.calls[0])[-1]["content"] == "Mr $Message says: hello"


def test_escaped_placeholder_in_name_keeps_backslash():
    transport = FakeTransport()
    s = _session(transport, prompt_template="$UserName: $Message", user_name=r"Bob \$Message")
    s.post("hi")
    assert _sent_messages(transport.calls[0])[-1]["content"] == r"Bob \$Message: hi"
