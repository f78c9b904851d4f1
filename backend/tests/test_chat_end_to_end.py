from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import app.chat_routes as chat_routes
from app.chat_routes import get_pipeline
from app.config import get_settings
from app.errors import LLMClientError, RetrievalError
from app.main import app
from app.notifier import NotificationError
from app.pipeline import ChatPipeline
from app.prompts import confirmation_phrase, refusal_phrase
from app.retriever import RetrievedDocument


class DummyRetriever:
    def __init__(self, documents=None, error=None):
        self.documents = documents or []
        self.error = error
        self.queries = []

    def retrieve(self, query, k=None):
        self.queries.append(query)
        if self.error:
            raise self.error
        return list(self.documents)


class DummyLLM:
    model = "mock-llm"

    def __init__(self, answer="BIMWERX is finite element analysis software.", chunk_size=5):
        self.answer = answer
        self.chunk_size = chunk_size
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        return self.answer

    def stream(self, prompt):
        self.prompts.append(prompt)
        return iter([self.answer[i:i + self.chunk_size] for i in range(0, len(self.answer), self.chunk_size)])


class RecordingNotifier:
    def __init__(self, error=None):
        self.events = []
        self.error = error

    def notify_escalation(self, event):
        self.events.append(event)
        if self.error:
            raise self.error


@pytest.fixture(autouse=True)
def _reset_state():
    chat_routes._rate_limiter = None
    yield
    chat_routes._rate_limiter = None
    app.dependency_overrides.clear()


@pytest.fixture
def build_client(make_settings):
    def _build(*, retriever=None, llm=None, notifier=None, **settings_overrides):
        settings = make_settings(**settings_overrides)
        pipeline = ChatPipeline(
            settings,
            retriever or DummyRetriever([RetrievedDocument(record={"content": "BIMWERX is FEA software."})]),
            llm or DummyLLM(),
            notifier if notifier is not None else RecordingNotifier(),
        )
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        return TestClient(app), pipeline

    return _build


def _ask(content, history=()):
    return {"messages": [*history, {"role": "user", "content": content}]}


def test_streaming_answer_is_grounded_in_retrieved_context(build_client):
    client, pipeline = build_client()

    response = client.post("/api/chat", json=_ask("What is BIMWERX?"))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "BIMWERX is finite element analysis software."
    prompt = pipeline.llm.prompts[0]
    assert "User: What is BIMWERX?" in prompt.split("\n")
    assert "BIMWERX is FEA software." in prompt.split("\n")
    assert pipeline.retriever.queries == ["What is BIMWERX?"]


def test_streamed_multibyte_answer_round_trips(build_client):
    answer = "Größe: 5 µm ✓ 日本語"
    client, _ = build_client(llm=DummyLLM(answer=answer, chunk_size=1))

    response = client.post("/api/chat", json=_ask("Units?"))

    assert response.content.decode("utf-8") == answer


def test_buffered_mode_returns_json_message(build_client):
    client, _ = build_client(chat_response_mode="json")

    response = client.post("/api/chat", json=_ask("What is BIMWERX?"))

    assert response.status_code == 200
    assert response.json() == {"message": "BIMWERX is finite element analysis software."}


def test_history_is_passed_to_prompt_in_order(build_client):
    client, pipeline = build_client(chat_response_mode="json")
    history = [
        {"role": "assistant", "content": "Hi, I am BIMWERX Bob."},
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "second"},
    ]

    client.post("/api/chat", json=_ask("third", history))

    prompt = pipeline.llm.prompts[0]
    block = prompt.split("Current conversation:\n", 1)[1].split("\nUser: third", 1)[0]
    assert block.split("\n") == ["assistant: Hi, I am BIMWERX Bob.", "user: first", "assistant: second"]


def test_retriever_failure_returns_json_error_and_skips_notifier(build_client):
    notifier = RecordingNotifier()
    client, pipeline = build_client(
        retriever=DummyRetriever(error=RetrievalError("vector store offline", status_code=503)),
        notifier=notifier,
    )

    response = client.post("/api/chat", json=_ask("What is BIMWERX?"))

    assert response.status_code == 503
    assert response.json() == {"error": "vector store offline"}
    assert notifier.events == []
    assert pipeline.llm.prompts == []


def test_llm_failure_defaults_to_gateway_error(build_client):
    class BrokenLLM(DummyLLM):
        def stream(self, prompt):
            raise LLMClientError("Groq request failed")

    client, _ = build_client(llm=BrokenLLM())

    response = client.post("/api/chat", json=_ask("What is BIMWERX?"))

    assert response.status_code == 502
    assert response.json() == {"error": "Groq request failed"}


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"messages": []},
        {"messages": [{"role": "assistant", "content": "hello"}]},
        {"messages": [{"role": "user", "content": "   "}]},
        {"messages": [{"role": "robot", "content": "hi"}]},
    ],
)
def test_malformed_requests_are_rejected(build_client, body):
    client, _ = build_client()

    response = client.post("/api/chat", json=body)

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.parametrize("mode", ["stream", "json"])
def test_confirmed_escalation_notifies_once(build_client, mode):
    notifier = RecordingNotifier()
    answer = confirmation_phrase("BIMWERX") + "."
    client, _ = build_client(llm=DummyLLM(answer=answer), notifier=notifier, chat_response_mode=mode)
    history = [
        {"role": "user", "content": "Can I get a quote?"},
        {"role": "assistant", "content": refusal_phrase("BIMWERX") + ". Could you please share your email address?"},
    ]

    response = client.post("/api/chat", json=_ask("contact me at a@b.com", history))

    assert response.status_code == 200
    assert len(notifier.events) == 1
    event = notifier.events[0]
    assert event.user_email == "a@b.com"
    assert "user: Can I get a quote?" in event.transcript
    assert answer in event.transcript


def test_refusal_alone_does_not_notify(build_client):
    notifier = RecordingNotifier()
    client, pipeline = build_client(llm=DummyLLM(answer=refusal_phrase("BIMWERX")), notifier=notifier)

    response = client.post("/api/chat", json=_ask("What is the weather?"))

    assert response.status_code == 200
    assert notifier.events == []
    assert "email address" in pipeline.llm.prompts[0]


def test_notification_failure_does_not_change_answer(build_client):
    answer = confirmation_phrase("BIMWERX")
    notifier = RecordingNotifier(error=NotificationError("SMTP auth failed"))
    client, _ = build_client(llm=DummyLLM(answer=answer), notifier=notifier, chat_response_mode="json")

    response = client.post("/api/chat", json=_ask("a@b.com"))

    assert response.status_code == 200
    assert response.json() == {"message": answer}
    assert len(notifier.events) == 1


def test_escalation_disabled_uses_plain_template(build_client):
    notifier = RecordingNotifier()
    client, pipeline = build_client(
        llm=DummyLLM(answer=confirmation_phrase("BIMWERX")),
        notifier=notifier,
        escalation_enabled=False,
    )

    client.post("/api/chat", json=_ask("a@b.com"))

    assert notifier.events == []
    assert "email address" not in pipeline.llm.prompts[0]


def test_rate_limit_returns_429(build_client):
    client, _ = build_client(chat_response_mode="json", chat_rate_limit_per_minute=1)

    assert client.post("/api/chat", json=_ask("one")).status_code == 200
    response = client.post("/api/chat", json=_ask("two"))

    assert response.status_code == 429
    assert "error" in response.json()
    assert int(response.headers["Retry-After"]) > 0


def test_health_and_chat_page(build_client):
    client, _ = build_client()

    assert client.get("/health").json() == {"status": "ok", "environment": "test"}
    page = client.get("/")
    assert page.status_code == 200
    assert "/api/chat" in page.text


def test_long_assistant_turn_in_history_is_accepted(build_client):
    client, pipeline = build_client(chat_response_mode="json")
    long_answer = "- item\n" * 1200
    history = [
        {"role": "user", "content": "List every feature."},
        {"role": "assistant", "content": long_answer},
    ]

    response = client.post("/api/chat", json=_ask("Thanks, and pricing?", history))

    assert response.status_code == 200
    assert long_answer.strip() in pipeline.llm.prompts[0]


def test_overlong_user_question_is_rejected(build_client):
    client, pipeline = build_client()

    response = client.post("/api/chat", json=_ask("x" * (chat_routes.MAX_QUESTION_CHARS + 1)))

    assert response.status_code == 400
    assert "at most" in response.json()["error"]
    assert pipeline.llm.prompts == []


def test_unexpected_notifier_error_does_not_change_answer(build_client):
    answer = confirmation_phrase("BIMWERX")
    notifier = RecordingNotifier(error=UnicodeEncodeError("ascii", "pässword", 1, 2, "ordinal not in range"))
    client, _ = build_client(llm=DummyLLM(answer=answer), notifier=notifier, chat_response_mode="json")

    response = client.post("/api/chat", json=_ask("a@b.com"))

    assert response.status_code == 200
    assert response.json() == {"message": answer}
    assert len(notifier.events) == 1
