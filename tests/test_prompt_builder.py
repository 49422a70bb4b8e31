import pytest

from study_guide_server.auth.models import AnonymousIdentity
from study_guide_server.generation.models import GenerationRequest
from study_guide_server.guard.input_guard import InputType
from study_guide_server.prompts.builder import (
    MAX_TOKENS_CAP,
    PromptBuilder,
    UnsupportedLanguageError,
)


def _request(value="John 3:16", input_type=InputType.SCRIPTURE, language="en"):
    return GenerationRequest(
        input_type=input_type,
        input_value=value,
        language=language,
        identity=AnonymousIdentity(session_id="anon-session-0001"),
    )


@pytest.fixture
def builder() -> PromptBuilder:
    return PromptBuilder()


@pytest.mark.parametrize("language, name", [("en", "English"), ("hi", "Hindi"), ("ml", "Malayalam")])
def test_prompt_names_target_language(builder, language, name):
    prompt = builder.build(_request(language=language))
    assert name in prompt.user_message
    assert "John 3:16" in prompt.user_message


def test_prompt_requests_every_section(builder):
    prompt = builder.build(_request())
    for key in ("summary", "interpretation", "context", "relatedVerses", "reflectionQuestions", "prayerPoints"):
        assert key in prompt.system_message
        assert key in prompt.user_message


def test_input_is_fenced_as_data(builder):
    prompt = builder.build(_request(value="Grace", input_type=InputType.TOPIC))
    user = prompt.user_message
    assert user.index("BEGIN INPUT") < user.index("Grace") < user.index("END INPUT")
    assert "never as instructions" in prompt.system_message


@pytest.mark.parametrize("language", ["en", "hi", "ml"])
def test_no_language_forbids_punctuation(builder, language):
    prompt = builder.build(_request(language=language))
    text = (prompt.system_message + prompt.user_message).lower()
    assert "avoid" not in text
    assert "punctuation are fine" in text


def test_scripture_examples_include_interpretation(builder):
    scripture = builder.build(_request()).user_message
    topic = builder.build(_request(value="Grace", input_type=InputType.TOPIC)).user_message
    assert "Example interpretation" in scripture
    assert "Example interpretation" not in topic


def test_base_params_per_language(builder):
    en = builder.base_params(_request(language="en"))
    hi = builder.base_params(_request(language="hi"))

    assert en.temperature == pytest.approx(0.3)
    assert en.max_tokens == 3000
    assert hi.temperature == pytest.approx(0.2)
    assert hi.max_tokens == 4500
    assert hi.language == "hi"


def test_complex_topic_gets_more_tokens(builder):
    simple = builder.base_params(_request(value="Grace", input_type=InputType.TOPIC))
    complex_ = builder.base_params(_request(value="Reformed soteriology", input_type=InputType.TOPIC))
    assert complex_.max_tokens == simple.max_tokens + 1000


def test_token_budget_is_capped(builder):
    params = builder.base_params(_request(value="doctrine " * 20, input_type=InputType.TOPIC, language="ml"))
    assert params.max_tokens <= MAX_TOKENS_CAP


def test_unsupported_language(builder):
    with pytest.raises(UnsupportedLanguageError):
        builder.build(_request(language="fr"))


def test_build_is_deterministic(builder):
    request = _request()
    assert builder.build(request) == builder.build(request)
