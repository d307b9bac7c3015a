"""
HuggingFace Client - Local model backend for the LLM contract

Responsibilities:
- Load model with 4-bit quantization (QLoRA)
- Render system prompt + history + user content with the chat template
- Generate a JSON reply, repair it, parse it
- Handle CUDA errors

Design principles:
- Dependency injection (no singleton)
- Fail fast on critical errors (CUDA OOM at load time)
- Generation failures surface as ModelError (controller shows them)
"""

import json
import logging
import time
from typing import Any, Dict, List

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    BitsAndBytesConfig
)

from language_coach.errors import ModelError
from language_coach.utils.helpers import repair_json_text

logger = logging.getLogger(__name__)

DEVICE_CUDA = "cuda"
DEVICE_CPU = "cpu"
DEVICE_MAP_AUTO = "auto"

SCHEMA_INSTRUCTION = (
    "Reply with ONLY a JSON object (no markdown, no commentary) that matches this JSON schema:"
)


class HuggingFaceClient:
    """LLM collaborator backed by a local HuggingFace causal LM"""

    def __init__(
        self,
        model_name: str,
        load_in_4bit: bool = True,
        device: str = DEVICE_CUDA,
        max_tokens: int = 768
    ) -> None:
        """
        Initialize model and tokenizer

        Args:
            model_name: HuggingFace model identifier
            load_in_4bit: Use 4-bit quantization (saves VRAM)
            device: Device to use ("cuda" or "cpu")
            max_tokens: Maximum new tokens per reply

        Raises:
            RuntimeError: If CUDA requested but not available
            Exception: If model loading fails
        """
        self.model_name = model_name
        self.device = device
        self.max_tokens = max_tokens

        if device == DEVICE_CUDA and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available. Check nvidia-smi.")

        logger.info(f"Loading model: {model_name}")
        logger.info(f"4-bit quantization: {load_in_4bit}")
        logger.info(f"Device: {device}")

        quantization_config = None
        if load_in_4bit and device == DEVICE_CUDA:
            quantization_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_quant_type="nf4",
                bnb_4bit_compute_dtype=torch.bfloat16,
                bnb_4bit_use_double_quant=True
            )
            logger.info("Using NF4 quantization with bfloat16 compute")

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(model_name)
            if self.tokenizer.pad_token is None and self.tokenizer.eos_token is not None:
                self.tokenizer.pad_token = self.tokenizer.eos_token
                logger.info("Set pad_token to eos_token")
        except Exception as e:
            logger.error(f"Failed to load tokenizer: {e}")
            raise

        try:
            self.model = AutoModelForCausalLM.from_pretrained(
                model_name,
                quantization_config=quantization_config,
                device_map=DEVICE_MAP_AUTO if device == DEVICE_CUDA else None,
                torch_dtype=torch.bfloat16 if device == DEVICE_CUDA else torch.float32
            )
            logger.info("Model loaded successfully")
        except torch.cuda.OutOfMemoryError:
            logger.error("CUDA Out of Memory during model loading")
            raise
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            raise

        self.model.eval()
        logger.info("HuggingFace client initialized successfully")

    def _build_prompt(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_content: str,
        schema: Dict[str, Any]
    ) -> str:
        system = f"{system_prompt}\n\n{SCHEMA_INSTRUCTION}\n{json.dumps(schema)}"
        messages = (
            [{"role": "system", "content": system}]
            + [{"role": m["role"], "content": m["content"]} for m in history]
            + [{"role": "user", "content": user_content}]
        )

        if getattr(self.tokenizer, "chat_template", None):
            try:
                return self.tokenizer.apply_chat_template(
                    messages, tokenize=False, add_generation_prompt=True
                )
            except Exception as e:
                # Some templates (Mistral) reject a system role
                logger.warning(f"Chat template failed ({e}); merging system prompt into first user turn")
                merged = messages[1:]
                first_user = next(i for i, m in enumerate(merged) if m["role"] == "user")
                merged[first_user] = {"role": "user", "content": f"{system}\n\n{merged[first_user]['content']}"}
                return self.tokenizer.apply_chat_template(
                    merged, tokenize=False, add_generation_prompt=True
                )

        lines = [f"{m['role'].upper()}: {m['content']}" for m in messages]
        lines.append("ASSISTANT:")
        return "\n\n".join(lines)

    def generate(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_content: str,
        schema: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Raises:
            ModelError: Generation failed or output is not a JSON object
        """
        prompt = self._build_prompt(system_prompt, history, user_content, schema)
        start_time = time.time()

        inputs = self.tokenizer(prompt, return_tensors="pt")
        if self.device == DEVICE_CUDA:
            inputs = inputs.to(DEVICE_CUDA)
        prompt_tokens = inputs.input_ids.shape[1]

        try:
            with torch.no_grad():
                outputs = self.model.generate(
                    inputs.input_ids,
                    attention_mask=inputs.attention_mask,
                    max_new_tokens=self.max_tokens,
                    do_sample=False,
                    pad_token_id=self.tokenizer.pad_token_id
                )
        except torch.cuda.OutOfMemoryError as e:
            logger.error(f"CUDA OOM during generation (prompt tokens: {prompt_tokens})")
            raise ModelError("Local model ran out of GPU memory") from e

        generated_ids = outputs[0][prompt_tokens:]
        text = self.tokenizer.decode(generated_ids, skip_special_tokens=True)

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"Local generation: {prompt_tokens} prompt tokens, {len(generated_ids)} new, {elapsed_ms:.0f}ms")

        if not text.strip():
            raise ModelError("No output text returned by local model")

        repaired = repair_json_text(text)
        try:
            parsed = json.loads(repaired)
        except json.JSONDecodeError as e:
            logger.error(f"Local model output is not JSON: {text[:200]}")
            raise ModelError(f"Model returned invalid JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise ModelError(f"Model returned {type(parsed).__name__}, expected JSON object")

        return parsed
