from __future__ import annotations

import json
from typing import Any

from wavvy.engine.chat_types import ChatResponse


def print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True))


def response_to_dict(response: ChatResponse) -> dict[str, Any]:
    timing = response.timing
    return {
        "content": response.content,
        "finish_reason": response.finish_reason,
        "usage": {
            "prompt_tokens": response.prompt_tokens,
            "completion_tokens": response.completion_tokens,
            "total_tokens": response.total_tokens,
        },
        "timing": None
        if timing is None
        else {
            "prefill_s": timing.prefill_s,
            "decode_s": timing.decode_s,
            "total_s": timing.total_s,
            "tok_per_s": timing.tok_per_s,
        },
    }


def print_usage(response: ChatResponse) -> None:
    print(f"Prompt Tokens: {response.prompt_tokens}")
    print(f"Completion Tokens: {response.completion_tokens}")
    print(f"Total Tokens: {response.total_tokens}")
    if response.timing is not None and response.timing.tok_per_s:
        print(f"Speed: {response.timing.tok_per_s:.2f} tok/s")
