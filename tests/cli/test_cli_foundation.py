import json

import pytest

from apps.cli import main as cli_main
from apps.cli.main import DEFAULT_SYSTEM_PROMPT, build_messages, build_parser, parse_params, sampling_config_from_args
from wavvy.engine.chat_template import ChatTemplate
from wavvy.engine.chat_types import Role
from wavvy.engine.errors import ConfigError
from wavvy.engine.types import ModelVariant

from tests.fakes import END_OF_SENTENCE_ID, IM_END_ID, ByteTokenizer, FakeAdapter, ScriptedForward


def _parse(*extra):
    return build_parser().parse_args(["--model", "m", "--prompt", "Hi", *extra])


def test_parser_requires_model_and_prompt():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--prompt", "Hi"])
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--model", "m"])


def test_parser_defaults_match_sampling_defaults():
    args = _parse()
    assert args.sample_len == 1000
    assert args.temperature == 0.8
    assert args.top_p is None and args.top_k is None
    assert args.seed == 299792458
    assert args.split_prompt is True
    assert args.repeat_penalty == 1.1
    assert args.repeat_last_n == 65
    assert args.model_variant == "primary"
    assert args.stream is False and args.json is False


def test_split_prompt_flags():
    assert _parse("--no-split-prompt").split_prompt is False
    assert _parse("--split-prompt").split_prompt is True
    with pytest.raises(SystemExit):
        _parse("--split-prompt", "--no-split-prompt")


def test_sampling_config_from_args():
    cfg = sampling_config_from_args(_parse("--temperature", "0", "--top-k", "4", "--seed", "1"))
    assert cfg.temperature == 0.0
    assert cfg.top_k == 4
    assert cfg.seed == 1


def test_sampling_config_from_args_validates():
    with pytest.raises(ConfigError):
        sampling_config_from_args(_parse("--top-p", "1.5"))


def test_parse_params():
    assert parse_params([]) is None
    assert parse_params(["name=Ada", "x=a=b"]) == {"name": "Ada", "x": "a=b"}
    with pytest.raises(ValueError):
        parse_params(["novalue"])
    with pytest.raises(ValueError):
        parse_params(["=v"])


def test_build_messages_system_prompt_precedence():
    default = build_messages(_parse())
    assert [m.role for m in default] == [Role.SYSTEM, Role.USER]
    assert default[0].content == DEFAULT_SYSTEM_PROMPT

    custom = build_messages(_parse("--system-prompt", "Be brief."))
    assert custom[0].content == "Be brief."

    none = build_messages(_parse("--no-system-prompt"))
    assert [m.role for m in none] == [Role.USER]
    assert none[0].content == "Hi"


def _install_fake(monkeypatch, answer: bytes, argv, *, eos_id=IM_END_ID, variant=ModelVariant.PRIMARY):
    args = _parse(*argv)
    prompt = ChatTemplate(build_messages(args), variant).format()
    prompt_len = len(ByteTokenizer().encode(prompt))
    adapter = FakeAdapter(ScriptedForward(list(answer) + [eos_id], prompt_len))
    monkeypatch.setattr(cli_main, "_build_adapter", lambda _args: adapter)
    return adapter


def test_main_json_output(monkeypatch, capsys):
    pytest.importorskip("torch")
    argv = ["--temperature", "0", "--json"]
    _install_fake(monkeypatch, b"Hello!", argv)
    rc = cli_main.main(["--model", "m", "--prompt", "Hi", *argv])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out["content"] == "Hello!"
    assert out["finish_reason"] == "stop"
    usage = out["usage"]
    assert usage["completion_tokens"] == 6
    assert usage["total_tokens"] == usage["prompt_tokens"] + usage["completion_tokens"]


def test_main_plain_output(monkeypatch, capsys):
    pytest.importorskip("torch")
    argv = ["--temperature", "0", "--no-system-prompt"]
    _install_fake(monkeypatch, b"ok", argv)
    rc = cli_main.main(["--model", "m", "--prompt", "Hi", *argv])
    assert rc == 0
    out = capsys.readouterr().out
    assert "Answer: ok" in out
    assert "Completion Tokens: 2" in out


def test_main_stream_matches_blocking(monkeypatch, capsys):
    pytest.importorskip("torch")
    argv = ["--temperature", "0", "--json"]
    _install_fake(monkeypatch, "naïve café".encode("utf-8"), argv)
    assert cli_main.main(["--model", "m", "--prompt", "Hi", *argv]) == 0
    blocking = json.loads(capsys.readouterr().out)

    _install_fake(monkeypatch, "naïve café".encode("utf-8"), argv)
    assert cli_main.main(["--model", "m", "--prompt", "Hi", "--stream", *argv]) == 0
    streamed = json.loads(capsys.readouterr().out)
    assert streamed["content"] == blocking["content"] == "naïve café"
    assert streamed["usage"] == blocking["usage"]


def test_main_alternate_variant(monkeypatch, capsys):
    pytest.importorskip("torch")
    argv = ["--temperature", "0", "--json", "--model-variant", "r1"]
    _install_fake(monkeypatch, b"think", argv, eos_id=END_OF_SENTENCE_ID, variant=ModelVariant.ALTERNATE)
    assert cli_main.main(["--model", "m", "--prompt", "Hi", *argv]) == 0
    assert json.loads(capsys.readouterr().out)["content"] == "think"


def test_main_with_params(monkeypatch, capsys):
    pytest.importorskip("torch")
    argv = ["--temperature", "0", "--json", "--no-system-prompt"]
    # The fake only needs the rendered prompt length; "Hi" renders unchanged.
    _install_fake(monkeypatch, b"yo", argv)
    rc = cli_main.main(["--model", "m", "--prompt", "Hi", "--param", "name=Ada", *argv])
    assert rc == 0
    assert json.loads(capsys.readouterr().out)["content"] == "yo"


def test_main_invalid_config_exit_code(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "_build_adapter", lambda _args: pytest.fail("adapter should not load"))
    assert cli_main.main(["--model", "m", "--prompt", "Hi", "--temperature", "-1"]) == 2
    assert "temperature" in capsys.readouterr().err


def test_main_unknown_variant_exit_code(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "_build_adapter", lambda _args: pytest.fail("adapter should not load"))
    assert cli_main.main(["--model", "m", "--prompt", "Hi", "--model-variant", "llama"]) == 2
    assert "Unknown model family" in capsys.readouterr().err


def test_main_bad_param_is_usage_error():
    with pytest.raises(SystemExit) as exc:
        cli_main.main(["--model", "m", "--prompt", "Hi", "--param", "oops"])
    assert exc.value.code == 2
