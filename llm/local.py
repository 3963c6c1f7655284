"""
Local transformers text generator.

Runs an instruction-tuned causal LM (Mistral-style) on this machine, with an
optional PEFT/LoRA adapter. Weights are loaded on first use; nothing is
fetched when model_path is a local directory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Optional

from postmortem.core.config import AIConfig
from postmortem.core.exceptions import ModelInferenceError

from .schema import Prompt

logger = logging.getLogger("llm")


@dataclass
class LocalModel:
    """
    Greedy-decoding local generator.

    Notes:
    - lora_path, when set, is attached on top of the base weights for
      inference only.
    - Prompts are rendered with the tokenizer's chat template when it has
      one, otherwise as [INST] text.
    """

    model_path: str
    lora_path: Optional[str] = None
    max_new_tokens: int = 768
    repetition_penalty: float = 1.05
    _tokenizer: Any = field(default=None, repr=False)
    _model: Any = field(default=None, repr=False)
    _device: str = field(default="cpu", repr=False)

    @classmethod
    def from_config(cls, ai_config: AIConfig) -> "LocalModel":
        if not ai_config.model_path:
            raise ModelInferenceError("model_path is required for the local generator")
        return cls(
            model_path=ai_config.model_path,
            lora_path=ai_config.lora_path,
            max_new_tokens=ai_config.max_tokens,
        )

    @property
    def local_files_only(self) -> bool:
        return Path(self.model_path).exists()

    def load(self) -> None:
        if self._model is not None:
            return

        import torch
        from transformers import AutoModelForCausalLM, AutoTokenizer

        self._device = "cuda" if torch.cuda.is_available() else "cpu"
        logger.info(
            "Loading local model %s (local_files_only=%s, device=%s)",
            self.model_path, self.local_files_only, self._device,
        )
        self._tokenizer = AutoTokenizer.from_pretrained(self.model_path, local_files_only=self.local_files_only)
        model = AutoModelForCausalLM.from_pretrained(self.model_path, local_files_only=self.local_files_only)

        if self.lora_path:
            from peft import PeftModel

            logger.info("Attaching LoRA adapter from %s", self.lora_path)
            model = PeftModel.from_pretrained(model, self.lora_path, is_trainable=False)

        self._model = model.to(self._device).eval()

    def generate(self, prompt: Prompt) -> str:
        try:
            self.load()
            return self._complete(prompt)
        except ModelInferenceError:
            raise
        except Exception as exc:
            raise ModelInferenceError(f"Local generation failed: {exc}") from exc

    def _encode(self, prompt: Prompt):
        if getattr(self._tokenizer, "chat_template", None):
            # Mistral templates reject a system role; fold it into the user turn.
            messages = [{"role": "user", "content": f"{prompt.system}\n\n{prompt.user}"}]
            text = self._tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
        else:
            text = prompt.as_text()

        context = getattr(self._model.config, "max_position_embeddings", None) or self._tokenizer.model_max_length
        max_input_tokens = max(1, context - self.max_new_tokens)
        return self._tokenizer(text, return_tensors="pt", truncation=True, max_length=max_input_tokens).to(self._device)

    def _complete(self, prompt: Prompt) -> str:
        import torch

        inputs = self._encode(prompt)
        prompt_length = inputs["input_ids"].shape[1]
        with torch.inference_mode():
            output_ids = self._model.generate(
                **inputs,
                max_new_tokens=self.max_new_tokens,
                do_sample=False,
                repetition_penalty=self.repetition_penalty,
                eos_token_id=self._tokenizer.eos_token_id,
                pad_token_id=self._tokenizer.eos_token_id,
            )
        text = self._tokenizer.decode(output_ids[0][prompt_length:], skip_special_tokens=True)
        if not text.strip():
            raise ModelInferenceError("Local model returned an empty response")
        return text.strip()
