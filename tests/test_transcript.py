from parley.messages import Message
from parley.transcript import Transcript


def test_streaming_placeholder_lifecycle():
    transcript = Transcript([Message.user("hi")])
    transcript.append(Message(role="assistant", is_streaming=True))

    transcript.update_streaming(content="Hel")
    assert transcript[-1].content == "Hel"
    assert transcript.persistable() == [Message.user("hi")]

    transcript.replace_streaming(Message.assistant("Hello"))
    assert transcript.messages == [Message.user("hi"), Message.assistant("Hello")]
    assert transcript.streaming_index() is None


def test_remove_streaming_placeholder():
    transcript = Transcript([Message.user("hi"), Message(role="assistant", is_streaming=True)])

    transcript.remove_streaming()

    assert transcript.messages == [Message.user("hi")]


def test_replace_without_placeholder_appends():
    transcript = Transcript([Message.user("hi")])

    transcript.replace_streaming(Message.assistant("Error: boom"))

    assert transcript[-1] == Message.assistant("Error: boom")


def test_last_assistant_helpers_skip_tool_messages():
    transcript = Transcript([
        Message.user("hi"),
        Message.assistant("first"),
        Message.tool("call_1", "result"),
    ])

    transcript.replace_last_assistant(Message.assistant("replaced"))
    assert transcript[1] == Message.assistant("replaced")

    transcript.remove_last_assistant()
    assert [m.role for m in transcript.messages] == ["user", "tool"]


def test_subscribe_and_unsubscribe():
    transcript = Transcript()
    seen = []
    unsubscribe = transcript.subscribe(seen.append)

    transcript.append(Message.user("hi"))
    unsubscribe()
    transcript.append(Message.user("again"))

    assert seen == [[Message.user("hi")]]
