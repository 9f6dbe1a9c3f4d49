"""`wavvy`: chat generation CLI.

Loads a model + tokenizer, formats a system/user conversation for the chosen
model variant, and prints the answer (or streams it). Run from source with:
  `python -m apps.cli.main --help`
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Sequence

from apps.cli.output import print_json, print_usage, response_to_dict
from wavvy.engine.adapters.hf import HFCausalLMAdapter
from wavvy.engine.chat_engine import ChatEngine
from wavvy.engine.chat_types import ChatResponse, Message, Role
from wavvy.engine.errors import WavvyError
from wavvy.engine.registry import get_variant, list_model_families
from wavvy.engine.sampling import SamplingConfig

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are helpful assistant!"

_DEFAULTS = SamplingConfig()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="wavvy", description="Wavvy chat generation CLI")

    model = p.add_argument_group("model")
    model.add_argument("--model", required=True, help="Model path or HF repo id")
    model.add_argument("--gguf-file", default=None, help="GGUF weights file inside --model (optional)")
    model.add_argument(
        "--tokenizer",
        default=None,
        help="Tokenizer path or repo id; a .json path is read as a tokenizer file (default: --model)",
    )
    model.add_argument(
        "--model-variant",
        default="primary",
        help=f"Prompt/EOS convention: {', '.join(list_model_families())} (default: %(default)s)",
    )
    model.add_argument("--device", default=None, help="Torch device (default: cuda if available, else cpu)")
    model.add_argument("--dtype", default=None, help="Torch dtype: float16|bfloat16|float32 (default: model default)")

    prompt = p.add_argument_group("prompt")
    prompt.add_argument("--prompt", required=True, help="User message")
    prompt.add_argument(
        "--system-prompt",
        default=None,
        help="Custom system prompt (use --no-system-prompt to disable)",
    )
    prompt.add_argument("--no-system-prompt", action="store_true", help="Disable the default system prompt")
    prompt.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Template parameter substituted into {{ KEY }} placeholders (repeatable)",
    )

    sampling = p.add_argument_group("sampling")
    sampling.add_argument(
        "--sample-len",
        type=int,
        default=_DEFAULTS.sample_len,
        help="Maximum number of tokens to generate (default: %(default)s)",
    )
    sampling.add_argument(
        "--temperature",
        type=float,
        default=_DEFAULTS.temperature,
        help="Sampling temperature, <= 0 for greedy (default: %(default)s)",
    )
    sampling.add_argument("--top-p", type=float, default=None, help="Nucleus sampling probability cutoff")
    sampling.add_argument("--top-k", type=int, default=None, help="Only sample among the top K tokens")
    sampling.add_argument("--seed", type=int, default=_DEFAULTS.seed, help="Sampling seed (default: %(default)s)")
    split_group = sampling.add_mutually_exclusive_group()
    split_group.add_argument(
        "--split-prompt",
        dest="split_prompt",
        action="store_true",
        help="Prefill the prompt one token at a time (default: on)",
    )
    split_group.add_argument(
        "--no-split-prompt",
        dest="split_prompt",
        action="store_false",
        help="Prefill the whole prompt in a single forward pass",
    )
    p.set_defaults(split_prompt=_DEFAULTS.split_prompt)
    sampling.add_argument(
        "--repeat-penalty",
        type=float,
        default=_DEFAULTS.repeat_penalty,
        help="Penalty for repeating tokens, 1 disables (default: %(default)s)",
    )
    sampling.add_argument(
        "--repeat-last-n",
        type=int,
        default=_DEFAULTS.repeat_last_n,
        help="Context size considered for the repeat penalty (default: %(default)s)",
    )

    out = p.add_argument_group("output")
    out.add_argument("--stream", action="store_true", help="Print the answer as it is generated")
    out.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    out.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: %(default)s)",
    )
    return p


def sampling_config_from_args(args: argparse.Namespace) -> SamplingConfig:
    config = SamplingConfig(
        sample_len=args.sample_len,
        temperature=args.temperature,
        top_p=args.top_p,
        top_k=args.top_k,
        seed=args.seed,
        split_prompt=bool(args.split_prompt),
        repeat_penalty=args.repeat_penalty,
        repeat_last_n=args.repeat_last_n,
    )
    config.validate()
    return config


def parse_params(items: Sequence[str]) -> dict[str, str] | None:
    """Parse repeated KEY=VALUE flags; None when there are none."""
    if not items:
        return None
    params: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Invalid --param {item!r}; expected KEY=VALUE.")
        params[key] = value
    return params


def build_messages(args: argparse.Namespace) -> list[Message]:
    # System prompt: custom > disabled > default
    if args.no_system_prompt:
        system_prompt = None
    elif args.system_prompt:
        system_prompt = args.system_prompt
    else:
        system_prompt = DEFAULT_SYSTEM_PROMPT

    messages: list[Message] = []
    if system_prompt:
        messages.append(Message(role=Role.SYSTEM, content=system_prompt))
    messages.append(Message(role=Role.USER, content=args.prompt))
    return messages


def _build_adapter(args: argparse.Namespace) -> Any:
    adapter = HFCausalLMAdapter()
    adapter.load(
        args.model,
        gguf_file=args.gguf_file,
        tokenizer_path=args.tokenizer,
        device=args.device,
        dtype=args.dtype,
    )
    return adapter


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(sys.argv[1:]) if argv is None else list(argv))

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        params = parse_params(args.param)
    except ValueError as exc:
        parser.error(str(exc))
        return 2

    try:
        config = sampling_config_from_args(args)
        variant = get_variant(args.model_variant)
    except WavvyError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    messages = build_messages(args)

    try:
        adapter = _build_adapter(args)
        logger.info("Model and tokenizer loaded: %s", adapter.model_info)
        engine = ChatEngine(adapter, variant=variant, config=config)

        if args.stream:
            stream = engine.stream_chat(messages, params)
            parts: list[str] = []
            last: ChatResponse | None = None
            if not args.json:
                print("Answer: ", end="", flush=True)
            for chunk in stream:
                parts.append(chunk.content)
                last = chunk
                if not args.json:
                    print(chunk.content, end="", flush=True)
            if not args.json:
                print()
            if last is None:
                return 1
            response = ChatResponse(
                content="".join(parts),
                prompt_tokens=last.prompt_tokens,
                completion_tokens=last.completion_tokens,
                finish_reason=last.finish_reason,
                timing=last.timing,
            )
        else:
            response = engine.chat(messages, params)
            if not args.json:
                print(f"Answer: {response.content}")
    except WavvyError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    if args.json:
        print_json(response_to_dict(response))
    else:
        print_usage(response)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
