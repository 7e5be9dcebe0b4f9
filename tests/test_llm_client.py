from credibility.llm_client import LLMClassifier, MockOfflineClient, get_classifier, get_llm_client
from credibility.prompts import build_classification_prompt


def test_get_llm_client_returns_mock_in_offline_mode(monkeypatch) -> None:
    monkeypatch.setenv("OFFLINE_MODE", "1")
    client = get_llm_client()
    assert isinstance(client, MockOfflineClient)


def test_mock_client_answers_yes_when_excerpt_covers_question() -> None:
    prompt = build_classification_prompt(
        question="Does the board oversee climate targets?",
        excerpt="The board oversees our climate targets and reviews them quarterly.",
    )
    assert MockOfflineClient().generate(prompt).text == "Yes"


def test_mock_client_answers_no_without_overlap() -> None:
    prompt = build_classification_prompt(
        question="Does the board oversee climate targets?",
        excerpt="Office opening hours are nine to five.",
    )
    assert MockOfflineClient().generate(prompt).text == "No"


def test_mock_client_is_insufficient_for_unparseable_prompt() -> None:
    assert MockOfflineClient().generate("free text").text == "Insufficient"


def test_classifier_sends_prompt_and_system_to_llm() -> None:
    seen: dict = {}

    class RecordingLLM(MockOfflineClient):
        def generate(self, prompt, **kwargs):
            seen["prompt"] = prompt
            seen.update(kwargs)
            return super().generate(prompt, **kwargs)

    classifier = LLMClassifier(RecordingLLM(), system="sys", max_tokens=7)
    reply = classifier.classify("Is there a plan?", "There is a plan.")

    assert reply == "Yes"
    assert "QUESTION:\nIs there a plan?" in seen["prompt"]
    assert "DOCUMENT_EXCERPT:\nThere is a plan." in seen["prompt"]
    assert seen["system"] == "sys"
    assert seen["max_tokens"] == 7
    assert classifier.provider == "mock"


def test_get_classifier_wraps_offline_client(monkeypatch) -> None:
    monkeypatch.setenv("OFFLINE_MODE", "1")
    assert get_classifier().provider == "mock"
