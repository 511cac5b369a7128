#!/usr/bin/env python3
"""
Copyright 2025 7th software Ltd.

Licensed under the Apache License, Version 2.0 (the "License"); you may not use this file except in compliance with the
License. You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software distributed under the License is distributed on an
"AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific
language governing permissions and limitations under the License.

The completion service used by DOCAT to summarise functions.

Two chat models share the same `generate(messages, cfg=...)` call:

* `OpenAIChatModel` sends the messages to the OpenAI chat completions API (the default, e.g. "gpt-4").
* `LocalChatModel` runs a GGUF model on this machine through llama.cpp. The messages are turned into a single prompt
  using an explicit chat format (Qwen/ChatML, LLaMA 3, Mistral or Phi-3), picked from the model filename unless told
  otherwise.

`generate_summary` builds the two-message prompt for a `FunctionSignature` and returns the model's 1-2 sentence
summary. One request is made per call; it is not retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from docat_config import DEFAULT_MODEL
from docat_errors import CompletionServiceFailure
from docat_javascript import FunctionSignature
from docat_log import echo
from openai import OpenAI
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union
import os
import re


Message = Dict[str, str]
Messages = List[Message]

FALLBACK_SUMMARY = "Generated summary"

SYSTEM_PROMPT = (
    "You are a technical documentation expert. Provide concise, clear function summaries suitable for XML "
    "documentation comments."
)


# ---------------------------- Chat formats ----------------------------


def _normalise_messages(messages: Messages) -> Messages:
    """
    Strip the 'role' and 'content' fields of each message and drop messages where either is empty.
    """

    out: Messages = []
    for m in messages:
        role = str(m.get("role", "")).strip()
        content = str(m.get("content", "")).strip()
        if role == "" or content == "":
            continue
        out.append({"role": role, "content": content})
    return out


def format_chat_qwen(messages: Messages) -> Tuple[str, List[str]]:
    """
    Format messages as a Qwen2.5 ChatML prompt, leaving an assistant turn open.

    Returns:
    - The prompt and its stop strings.
    """
    parts: List[str] = []
    for m in _normalise_messages(messages):
        if m["role"] in ("system", "user", "assistant"):
            parts.append(f"<|im_start|>{m['role']}\n{m['content']}<|im_end|>")
    parts.append("<|im_start|>assistant\n")
    return "".join(parts), ["<|im_end|>", "<|im_start|>", "<|endoftext|>"]


def format_chat_llama3(messages: Messages) -> Tuple[str, List[str]]:
    """
    Format messages in the LLaMA 3 Instruct style, leaving an assistant header open.
    """
    parts: List[str] = []
    for m in _normalise_messages(messages):
        if m["role"] in ("system", "user", "assistant"):
            parts.append(f"<|start_header_id|>{m['role']}<|end_header_id|>\n\n{m['content']}<|eot_id|>")
    parts.append("<|start_header_id|>assistant<|end_header_id|>\n\n")
    return "".join(parts), ["<|eot_id|>", "<|end_of_text|>", "<|start_header_id|>"]


def format_chat_mistral(messages: Messages) -> Tuple[str, List[str]]:
    """
    Format messages as Mistral/Mixtral Instruct `[INST] ... [/INST]` blocks.

    Mistral has no system role, so a system message is folded into the first user turn.
    """
    msgs = _normalise_messages(messages)
    sys_txt = ""
    if msgs and msgs[0]["role"] == "system":
        sys_txt = msgs[0]["content"]
        msgs = msgs[1:]

    parts: List[str] = []
    buf_user: Optional[str] = None

    for m in msgs:
        if m["role"] == "user":
            if buf_user is not None:
                parts.append(f"[INST] {buf_user.strip()} [/INST]")
            buf_user = f"{sys_txt}\n\n{m['content']}" if sys_txt else m["content"]
            sys_txt = ""
        elif m["role"] == "assistant":
            parts.append(f"[INST] {(buf_user or '').strip()} [/INST]{m['content']}")
            buf_user = None

    parts.append(f"[INST] {(buf_user or sys_txt).strip()} [/INST]")
    return "".join(parts), ["</s>", "[INST]"]


def format_chat_phi3(messages: Messages) -> Tuple[str, List[str]]:
    """
    Format messages in the Phi-3 style (`<|role|>\\n...<|end|>`), leaving an assistant turn open.
    """
    parts: List[str] = []
    for m in _normalise_messages(messages):
        if m["role"] in ("system", "user", "assistant"):
            parts.append(f"<|{m['role']}|>\n{m['content']}<|end|>\n")
    parts.append("<|assistant|>\n")
    return "".join(parts), ["<|end|>", "<|user|>", "<|system|>"]


FORMATTERS = {
    "qwen": format_chat_qwen,
    "chatml": format_chat_qwen,       # alias
    "llama3": format_chat_llama3,
    "llama-3": format_chat_llama3,    # alias
    "mistral": format_chat_mistral,
    "mixtral": format_chat_mistral,   # alias
    "phi3": format_chat_phi3,
}


def llm_formatters() -> List[str]:
    """Return the names of the available chat formats."""

    return sorted(FORMATTERS.keys())


def _auto_detect_format(model_path: str) -> str:
    """
    Guess the chat format from the model filename, defaulting to 'qwen'.
    """
    name = os.path.basename(model_path).lower()
    if re.search(r"qwen", name):
        return "qwen"
    if re.search(r"llama[-_ ]?3", name):
        return "llama3"
    if re.search(r"(mistral|mixtral)", name):
        return "mistral"
    if re.search(r"phi[-_ ]?3", name):
        return "phi3"
    return "qwen"


# ---------------------------- Models ----------------------------


@dataclass
class GenerationConfig:
    """
    Settings that control how the summary is generated.

    Attributes
    ----------
    max_new_tokens : int
        Hard limit on the number of tokens generated. A 1-2 sentence summary fits comfortably in 150.
    temperature : float
        Randomness of the sampling. Low values keep summaries factual.
    top_p, top_k, repeat_penalty
        Sampling controls, only used by the local llama.cpp model.
    """

    max_new_tokens: int = 150
    temperature: float = 0.3
    top_p: float = 0.9
    top_k: int = 60
    repeat_penalty: float = 1.05


def is_local_model(model: str) -> bool:
    """Return `True` if `model` names a local GGUF file rather than a hosted model."""

    return model.lower().endswith(".gguf")


class OpenAIChatModel:
    """
    Chat completions through the OpenAI API.

    A ready-made `client` can be passed in (anything with `chat.completions.create`); otherwise one is created from
    `api_key`.
    """

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, *, client=None) -> None:
        self.model = model
        self.client = client if client is not None else OpenAI(api_key=api_key)

    def generate(self, messages: Messages, *, cfg: Optional[GenerationConfig] = None) -> str:
        """
        Request one completion and return its text, stripped. An empty reply is returned as "".

        Raises:
        - `CompletionServiceFailure`: The request failed.
        """

        cfg = cfg or GenerationConfig()
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=cfg.temperature,
                max_tokens=cfg.max_new_tokens,
            )
        except Exception as exc:
            raise CompletionServiceFailure(str(exc)) from exc

        if not resp.choices:
            return ""
        content = resp.choices[0].message.content
        return (content or "").strip()


class LocalChatModel:
    """
    Wraps llama_cpp.Llama with explicit chat formatting and raw completion.

    You can set `chat_format` to any key in FORMATTERS or "auto".
    """

    @classmethod
    def download_model(cls, repo_id: str, include: Union[str, Iterable[str]], models_path: str = "./models") -> Path:
        """
        Download a LLM model (.gguf file or files) into a local models folder.

        Downloads into `<models_path>/<repo_id>`, keeping only files matching `include`, and returns the path to the
        downloaded file, or to the first shard of a split model (`*-00001-of-*.gguf`).

        Raises
        ------
        FileNotFoundError
            If nothing matches.
        """

        from huggingface_hub import snapshot_download

        patterns = [include] if isinstance(include, str) else list(include)
        base = Path(models_path).expanduser()
        out = base / repo_id
        out.mkdir(parents=True, exist_ok=True)

        snapshot_download(repo_id=repo_id, local_dir=str(out), allow_patterns=patterns)

        files = sorted({p for pat in patterns for p in out.rglob(pat) if p.is_file()})
        if not files:
            raise FileNotFoundError(f"No files matched {patterns} in {out}")

        first = next((p for p in files if re.search(r"-0*1-of-0*\d+\.gguf$", p.name, re.I)), None)
        chosen = first or next((p for p in files if p.suffix.lower() == ".gguf"), files[0])

        return chosen if not base.is_absolute() else chosen.resolve()

    def __init__(
        self,
        model_path: str,
        *,
        chat_format: Optional[str] = None,
        n_ctx: int = 8 * 1024,
        n_gpu_layers: int = -1,
        verbose: bool = False,
        **llama_kwargs,
    ) -> None:
        """
        Load a local GGUF model via llama.cpp.

        Raises
        ------
        FileNotFoundError
            If `model_path` does not exist.
        ValueError
            If an explicit `chat_format` is not recognised.
        """

        if not os.path.exists(model_path):
            raise FileNotFoundError(f"Model path does not exist: {model_path}")

        # Resolve format eagerly to fail fast if invalid
        chosen = (chat_format or "auto").lower()
        if chosen == "auto":
            chosen = _auto_detect_format(model_path)
        if chosen not in FORMATTERS:
            raise ValueError(f"Unknown chat_format '{chat_format}'. Valid: {llm_formatters()}")

        from llama_cpp import Llama

        self.chat_format: str = chosen
        self.model_path = model_path
        self.llm = Llama(
            model_path=model_path,
            n_gpu_layers=n_gpu_layers,
            n_ctx=n_ctx,
            verbose=verbose,
            **llama_kwargs,
        )

    def generate(self, messages: Messages, *, cfg: Optional[GenerationConfig] = None) -> str:
        """
        Produce a single non-streaming completion for the chat-formatted messages.

        Raises:
        - `CompletionServiceFailure`: llama.cpp failed to complete the prompt.
        """

        prompt, stops = FORMATTERS[self.chat_format](messages)
        cfg = cfg or GenerationConfig()

        try:
            resp = self.llm.create_completion(
                prompt=prompt,
                max_tokens=cfg.max_new_tokens,
                temperature=cfg.temperature,
                top_p=cfg.top_p,
                top_k=cfg.top_k,
                repeat_penalty=cfg.repeat_penalty,
                stop=stops,
            )
        except Exception as exc:
            raise CompletionServiceFailure(str(exc)) from exc

        # llama.cpp returns plain text for completion choices
        text = resp.get("choices", [{}])[0].get("text", "")
        return text.strip()


def make_chat_model(model: str, api_key: Optional[str] = None, *, verbose: bool = False):
    """
    Create the chat model for a model name: a local llama.cpp model for a `.gguf` path, OpenAI otherwise.
    """

    if is_local_model(model):
        echo(f"Loading local model '{model}'...")
        try:
            return LocalChatModel(model, verbose=verbose)
        except (FileNotFoundError, ValueError) as exc:
            raise CompletionServiceFailure(str(exc)) from exc

    return OpenAIChatModel(api_key or "", model)


# ---------------------------- Summaries ----------------------------


def summary_messages(signature: FunctionSignature) -> Messages:
    """
    Build the system and user messages asking for a short summary of a function.
    """

    prompt = (
        "Analyze this JavaScript/TypeScript function and generate a concise summary for XML documentation.\n\n"
        "Function:\n"
        f"{signature.source_text}\n\n"
        "Provide ONLY a brief summary (1-2 sentences) describing what this function does. Do not include parameter "
        "descriptions or return value descriptions. Focus on the function's purpose and behavior."
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def generate_summary(llm, signature: FunctionSignature, cfg: Optional[GenerationConfig] = None) -> str:
    """
    Ask the model for a summary of `signature`.

    Returns:
    - The summary, or "Generated summary" if the model returned nothing.

    Raises:
    - `CompletionServiceFailure`: The request failed.
    """

    messages = summary_messages(signature)
    echo(f"Requesting summary of '{signature.name}'...")
    reply = llm.generate(messages, cfg=cfg or GenerationConfig())
    echo(f"LLM output:\n\n{reply}\n")
    return reply.strip() or FALLBACK_SUMMARY
