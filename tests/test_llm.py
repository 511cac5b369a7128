"""Tests for the completion service wrappers and summary prompts."""
from types import SimpleNamespace

import pytest

from docat_errors import CompletionServiceFailure
from docat_javascript import parse_function_from_text
from docat_llm import (
    FALLBACK_SUMMARY,
    GenerationConfig,
    LocalChatModel,
    OpenAIChatModel,
    _auto_detect_format,
    format_chat_mistral,
    format_chat_qwen,
    generate_summary,
    is_local_model,
    llm_formatters,
    make_chat_model,
    summary_messages,
)


ADD = parse_function_from_text("function add(a, b) { return a + b; }")


class FakeCompletions:
    def __init__(self, content=None, exc=None, choices=True):
        self.content = content
        self.exc = exc
        self.choices = choices
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        if not self.choices:
            return SimpleNamespace(choices=[])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _openai_model(completions, model="gpt-4"):
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIChatModel("sk-test", model, client=client)


def test_summary_messages_carry_function_text():
    messages = summary_messages(ADD)

    assert [m["role"] for m in messages] == ["system", "user"]
    assert "technical documentation expert" in messages[0]["content"]
    assert "function add(a, b) { return a + b; }" in messages[1]["content"]
    assert "1-2 sentences" in messages[1]["content"]


def test_openai_request_parameters():
    completions = FakeCompletions(content="  Adds two numbers.  ")
    llm = _openai_model(completions, model="gpt-4o")

    summary = generate_summary(llm, ADD)

    assert summary == "Adds two numbers."
    call = completions.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["temperature"] == 0.3
    assert call["max_tokens"] == 150
    assert call["messages"] == summary_messages(ADD)


def test_empty_reply_falls_back():
    assert generate_summary(_openai_model(FakeCompletions(content=None)), ADD) == FALLBACK_SUMMARY
    assert generate_summary(_openai_model(FakeCompletions(content="   ")), ADD) == FALLBACK_SUMMARY
    assert generate_summary(_openai_model(FakeCompletions(choices=False)), ADD) == FALLBACK_SUMMARY


def test_request_failure_is_reported():
    llm = _openai_model(FakeCompletions(exc=RuntimeError("401 Unauthorized")))

    with pytest.raises(CompletionServiceFailure, match="401 Unauthorized"):
        generate_summary(llm, ADD)


def test_generation_config_defaults():
    cfg = GenerationConfig()

    assert cfg.max_new_tokens == 150
    assert cfg.temperature == 0.3


def test_model_backend_selection():
    assert is_local_model("./models/qwen2.5-7b-instruct-q4_k_m.gguf")
    assert is_local_model("MODEL.GGUF")
    assert not is_local_model("gpt-4")

    assert isinstance(make_chat_model("gpt-4", "sk-test"), OpenAIChatModel)


def test_missing_local_model_is_a_completion_failure(tmp_path):
    with pytest.raises(CompletionServiceFailure, match="does not exist"):
        make_chat_model(str(tmp_path / "missing.gguf"))


def test_chat_format_detection():
    assert _auto_detect_format("/m/Qwen2.5-7B-Instruct-Q4_K_M.gguf") == "qwen"
    assert _auto_detect_format("Meta-Llama-3.1-8B-Instruct-Q6_K.gguf") == "llama3"
    assert _auto_detect_format("mixtral-8x7b.gguf") == "mistral"
    assert _auto_detect_format("Phi-3-mini.gguf") == "phi3"
    assert _auto_detect_format("something-else.gguf") == "qwen"
    assert "chatml" in llm_formatters()


def test_qwen_prompt():
    prompt, stops = format_chat_qwen([
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": " Hi "},
        {"role": "user", "content": ""},
    ])

    assert prompt == (
        "<|im_start|>system\nBe brief.<|im_end|>"
        "<|im_start|>user\nHi<|im_end|>"
        "<|im_start|>assistant\n"
    )
    assert "<|im_end|>" in stops


def test_mistral_folds_system_into_first_user_turn():
    prompt, _ = format_chat_mistral([
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Summarise."},
    ])

    assert prompt == "[INST] Be brief.\n\nSummarise. [/INST]"


def test_local_model_generate():
    class FakeLlama:
        def __init__(self):
            self.kwargs = None

        def create_completion(self, **kwargs):
            self.kwargs = kwargs
            return {"choices": [{"text": " Adds two numbers.\n"}]}

    llm = object.__new__(LocalChatModel)
    llm.chat_format = "llama3"
    llm.model_path = "model.gguf"
    llm.llm = FakeLlama()

    assert generate_summary(llm, ADD) == "Adds two numbers."
    assert llm.llm.kwargs["max_tokens"] == 150
    assert llm.llm.kwargs["prompt"].endswith("<|start_header_id|>assistant<|end_header_id|>\n\n")
    assert "<|eot_id|>" in llm.llm.kwargs["stop"]


def test_local_model_failure():
    class BrokenLlama:
        def create_completion(self, **kwargs):
            raise RuntimeError("llama_decode returned -1")

    llm = object.__new__(LocalChatModel)
    llm.chat_format = "qwen"
    llm.model_path = "model.gguf"
    llm.llm = BrokenLlama()

    with pytest.raises(CompletionServiceFailure, match="llama_decode"):
        generate_summary(llm, ADD)


def test_download_model_picks_first_shard(tmp_path, monkeypatch):
    seen = {}

    def fake_snapshot_download(repo_id, local_dir, allow_patterns):
        seen["repo_id"] = repo_id
        for name in ("model-00002-of-00002.gguf", "model-00001-of-00002.gguf", "README.md"):
            (tmp_path / repo_id / name).write_text("x")

    monkeypatch.setattr("huggingface_hub.snapshot_download", fake_snapshot_download)

    path = LocalChatModel.download_model("org/Model-GGUF", "*.gguf", str(tmp_path))

    assert seen["repo_id"] == "org/Model-GGUF"
    assert path == (tmp_path / "org/Model-GGUF" / "model-00001-of-00002.gguf").resolve()


def test_download_model_nothing_matched(tmp_path, monkeypatch):
    monkeypatch.setattr("huggingface_hub.snapshot_download", lambda **kwargs: None)

    with pytest.raises(FileNotFoundError):
        LocalChatModel.download_model("org/Empty", "*.gguf", str(tmp_path))
