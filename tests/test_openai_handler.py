from types import SimpleNamespace

import pytest

import openai_handler
from openai_handler import UNAVAILABLE_MESSAGE, analyze_symptoms, suggest_prescription


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(content=None, error=None):
    completions = FakeCompletions(content, error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.fixture(autouse=True)
def no_default_client(monkeypatch):
    monkeypatch.setattr(openai_handler, "client", None)


async def test_without_client_degrades():
    assert await analyze_symptoms("fièvre, toux") == UNAVAILABLE_MESSAGE
    assert await suggest_prescription("Angine") == []


async def test_analyze_symptoms_includes_history_in_prompt():
    client, completions = fake_client("## Hypothèses\n1. Grippe")
    result = await analyze_symptoms("fièvre, toux", ["Asthme", "HTA"], openai_client=client)
    assert result.startswith("## Hypothèses")
    prompt = completions.requests[0]["messages"][0]["content"]
    assert "fièvre, toux" in prompt and "Asthme, HTA" in prompt


async def test_analyze_symptoms_api_error():
    client, _ = fake_client(error=RuntimeError("quota"))
    assert await analyze_symptoms("fièvre", openai_client=client) == UNAVAILABLE_MESSAGE


async def test_suggest_prescription_parses_medications():
    client, completions = fake_client('{"medications": ["Amoxicilline 1g - 2x/j", "  ", "Paracétamol 1g"]}')
    result = await suggest_prescription("Angine", openai_client=client)
    assert result == ["Amoxicilline 1g - 2x/j", "Paracétamol 1g"]
    assert completions.requests[0]["response_format"] == {"type": "json_object"}


@pytest.mark.parametrize("content", ["not json", '{"other": 1}', '{"medications": "Amoxicilline"}'])
async def test_suggest_prescription_bad_payload(content):
    client, _ = fake_client(content)
    assert await suggest_prescription("Angine", openai_client=client) == []


def test_build_client_uses_configured_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    built = openai_handler.build_client({"OPENAI_API_KEY": "sk-test-123"})
    assert built is not None
    assert built.api_key == "sk-test-123"
    assert openai_handler.build_client({"OPENAI_API_KEY": None}) is None


def test_model_comes_from_loaded_configuration():
    assert openai_handler.MODEL == openai_handler.config["OPENAI_MODEL"]
