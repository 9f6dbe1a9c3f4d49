import pytest

from wavvy.engine.chat_template import ChatTemplate
from wavvy.engine.chat_types import Message, Role
from wavvy.engine.errors import TemplateError
from wavvy.engine.types import ModelVariant


def test_primary_single_user_message():
    template = ChatTemplate([Message(Role.USER, "Hi")], ModelVariant.PRIMARY)
    assert template.format() == "<|im_start|>user\nHi<|im_end|>\n<|im_start|>assistant\n"


def test_alternate_single_user_message():
    template = ChatTemplate([Message(Role.USER, "Hi")], ModelVariant.ALTERNATE)
    assert template.format() == "<｜User｜>Hi\n<｜Assistant｜>"


def test_primary_system_then_user():
    messages = [
        Message(Role.SYSTEM, "You are helpful assistant!"),
        Message(Role.USER, "What is 1+1"),
    ]
    assert ChatTemplate(messages).format() == (
        "<|im_start|>system\nYou are helpful assistant!<|im_end|>\n"
        "<|im_start|>user\nWhat is 1+1<|im_end|>\n"
        "<|im_start|>assistant\n"
    )


def test_alternate_capitalizes_every_role():
    messages = [
        Message(Role.SYSTEM, "Be brief."),
        Message(Role.USER, "Hi"),
        Message(Role.ASSISTANT, "Hello"),
        Message(Role.USER, "Bye"),
    ]
    assert ChatTemplate(messages, ModelVariant.ALTERNATE).format() == (
        "<｜System｜>Be brief.\n<｜User｜>Hi\n<｜Assistant｜>Hello\n<｜User｜>Bye\n<｜Assistant｜>"
    )


def test_empty_conversation_is_generation_prompt_only():
    assert ChatTemplate([]).format() == "<|im_start|>assistant\n"
    assert ChatTemplate([], ModelVariant.ALTERNATE).format() == "<｜Assistant｜>"


def test_format_with_params_substitutes_placeholders():
    template = ChatTemplate([Message(Role.USER, "Say hello to {{ name }}.")])
    text = template.format_with_params({"name": "Ada"})
    assert text == "<|im_start|>user\nSay hello to Ada.<|im_end|>\n<|im_start|>assistant\n"


def test_format_with_params_keeps_trailing_newline():
    template = ChatTemplate([Message(Role.USER, "{{ q }}")])
    assert template.format_with_params({"q": "x"}).endswith("assistant\n")


def test_format_with_params_missing_name_renders_empty():
    template = ChatTemplate([Message(Role.USER, "[{{ missing }}]")], ModelVariant.ALTERNATE)
    assert template.format_with_params({}) == "<｜User｜>[]\n<｜Assistant｜>"


def test_format_with_params_syntax_error_is_fatal():
    template = ChatTemplate([Message(Role.USER, "broken {{ name ")])
    with pytest.raises(TemplateError):
        template.format_with_params({"name": "Ada"})


def test_message_str():
    assert str(Message(Role.ASSISTANT, "ok")) == "assistant: ok"


def test_format_with_params_leaves_expressions_verbatim():
    content = "{{ cycler.__init__.__globals__.os.getcwd() }}"
    template = ChatTemplate([Message(Role.USER, content)])
    text = template.format_with_params({"name": "x"})
    assert text == f"<|im_start|>user\n{content}<|im_end|>\n<|im_start|>assistant\n"


def test_format_with_params_blocks_private_attributes():
    template = ChatTemplate([Message(Role.USER, "[{{ obj.__class__ }}][{{ cycler }}]")])
    text = template.format_with_params({"obj": "x"})
    assert text.startswith("<|im_start|>user\n[][]<|im_end|>")


@pytest.mark.parametrize(
    "content",
    [
        "What does {# mean in C macros?",
        "Use {% raw %} carefully",
        "{{#items}}section{{/items}}",
        "a { b } c }}",
    ],
)
def test_format_with_params_keeps_plain_text_literal(content):
    template = ChatTemplate([Message(Role.USER, content)])
    text = template.format_with_params({"name": "Ada"})
    assert text == f"<|im_start|>user\n{content}<|im_end|>\n<|im_start|>assistant\n"


def test_format_with_params_mustache_variants():
    template = ChatTemplate([Message(Role.USER, "{{{ a }}}|{{& a }}|{{! note }}|{{ user.name }}")])
    text = template.format_with_params({"a": "<b>", "user": {"name": "Ada"}})
    assert text.startswith("<|im_start|>user\n<b>|<b>||Ada<|im_end|>")
