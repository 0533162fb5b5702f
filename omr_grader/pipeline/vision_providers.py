"""
Vision Providers Module
=======================
Remote vision-model detection tiers behind the DetectionTier interface.
Supports OpenAI-compatible endpoints (Groq Cloud, OpenRouter) and Ollama.

Every provider receives the rectified sheet as a JPEG data URL plus the
layout metadata, and must answer with per-question options and confidences.
"""

import base64
import json
import logging
import re
from abc import abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from ..config import Settings, settings as default_settings
from ..core.constants import CV_TIER, EMPTY_MARK, MULTIPLE_MARK
from ..core.exceptions import ConfigurationError, TierInvocationError
from .answer_analysis import CVTier
from .image_processing import RectifiedSheet
from .sheet_layout import LayoutTemplate, layout_metadata
from .tiers import DetectionResult, DetectionTier

logger = logging.getLogger(__name__)


class VisionProvider(str, Enum):
    """Supported vision providers"""
    GROQ = "groq"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"


def build_prompt(template: LayoutTemplate) -> str:
    """Instructions sent with the rectified sheet image"""
    letters = ", ".join(template.option_letters)
    metadata = json.dumps(layout_metadata(template))
    n = template.question_count
    return (
        "You are an expert OMR (Optical Mark Recognition) sheet analyzer. "
        "Detect filled bubbles on this perspective-corrected answer sheet with maximum precision.\n\n"
        f"Sheet layout: {metadata}\n"
        f"- Questions 1 to {n}, options {letters}\n"
        "- A filled bubble is clearly darker than the empty ones; detect faint pencil marks too\n"
        "- Ignore erased or smudged bubbles that are lighter than a real mark\n\n"
        "Return ONLY a JSON object, no markdown, with this exact structure:\n"
        '{"answers": {"1": {"options": ["A"], "confidence": 0.97}, '
        '"2": {"options": [], "confidence": 0.9}, '
        '"3": {"options": ["B", "D"], "confidence": 0.8}}}\n'
        f"- Include every question from 1 to {n}\n"
        "- options lists every filled bubble (empty list when nothing is filled)\n"
        "- confidence is your certainty for that question between 0 and 1"
    )


def _clamp_confidence(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(1.0, max(0.0, confidence))


def _normalize_options(raw: Any, letters: Tuple[str, ...]) -> Optional[Tuple[str, ...]]:
    """Marked options in option order, or None if the value is invalid"""
    if raw is None:
        return ()

    if isinstance(raw, str):
        token = raw.strip().upper()
        if token in ("", EMPTY_MARK):
            return ()
        if token == MULTIPLE_MARK:
            return (MULTIPLE_MARK,)
        items = [t for t in re.split(r"[^A-Z]+", token) if t]
        if len(items) == 1 and len(items[0]) > 1:
            items = list(items[0])
    elif isinstance(raw, (list, tuple)):
        items = [str(item).strip().upper() for item in raw]
    else:
        return None

    if any(item not in letters for item in items):
        return None
    return tuple(letter for letter in letters if letter in items)


def _parse_answer(value: Any, letters: Tuple[str, ...], default_confidence: float) -> Tuple[Tuple[str, ...], float]:
    if isinstance(value, dict):
        raw = value.get("options", value.get("option"))
        confidence = _clamp_confidence(value.get("confidence"), default_confidence)
    else:
        raw = value
        confidence = default_confidence

    options = _normalize_options(raw, letters)
    if options is None:
        return (), 0.0
    return options, confidence


def parse_vision_response(
    text: str,
    template: LayoutTemplate,
    tier: str,
    default_confidence: float = 0.8
) -> List[DetectionResult]:
    """
    Parse a vision model's JSON answer into one result per question.

    Accepts {"answers": {"1": {"options": [...], "confidence": x}}} and the
    flat {"1": "A" | "EMPTY" | "MULTIPLE"} shape. Questions that are missing
    or carry invalid letters get no options and confidence 0.

    Raises:
        TierInvocationError: If the text is not a JSON object
    """
    clean = text.replace("```json", "").replace("```", "").strip()
    try:
        payload = json.loads(clean)
    except ValueError as e:
        raise TierInvocationError(tier, f"malformed response: {e}")

    if not isinstance(payload, dict):
        raise TierInvocationError(tier, "malformed response: expected a JSON object")

    answers = payload.get("answers", payload)
    if not isinstance(answers, dict):
        raise TierInvocationError(tier, "malformed response: 'answers' must be an object")

    letters = template.option_letters
    parsed: Dict[int, Tuple[Tuple[str, ...], float]] = {}
    for key, value in answers.items():
        try:
            q_num = int(key)
        except (TypeError, ValueError):
            continue
        if 1 <= q_num <= template.question_count:
            parsed[q_num] = _parse_answer(value, letters, default_confidence)

    missing = template.question_count - len(parsed)
    if missing:
        logger.warning(f"Tier {tier} omitted {missing} questions")

    results = []
    for q_num in range(1, template.question_count + 1):
        options, confidence = parsed.get(q_num, ((), 0.0))
        results.append(DetectionResult(
            question_number=q_num,
            options=options,
            confidence=confidence,
            tier=tier,
        ))
    return results


def _response_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content)


class VisionTier(DetectionTier):
    """
    Abstract base class for vision-model tiers.
    Provides prompting and parsing; subclasses supply the chat model.
    """

    remote = True

    def __init__(
        self,
        tier_name: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 2048,
        default_confidence: float = 0.8,
        timeout: float = 30.0,
        chat_model: Optional[BaseChatModel] = None,
    ):
        self._name = tier_name
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.default_confidence = default_confidence
        self.timeout = timeout
        self._llm: Optional[BaseChatModel] = chat_model

    @property
    def name(self) -> str:
        return self._name

    @abstractmethod
    def _create_llm(self) -> BaseChatModel:
        """Create and return the underlying LangChain chat model"""
        pass

    @property
    def llm(self) -> BaseChatModel:
        """Get the underlying LangChain chat model (lazy initialization)"""
        if self._llm is None:
            self._llm = self._create_llm()
        return self._llm

    def build_messages(self, sheet: RectifiedSheet) -> List[HumanMessage]:
        image_b64 = base64.b64encode(sheet.to_jpeg_bytes()).decode("ascii")
        return [HumanMessage(content=[
            {"type": "text", "text": build_prompt(sheet.template)},
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
        ])]

    def detect(self, sheet: RectifiedSheet) -> List[DetectionResult]:
        messages = self.build_messages(sheet)
        try:
            response = self.llm.invoke(messages)
        except TierInvocationError:
            raise
        except Exception as e:
            logger.error(f"Vision tier {self.name} ({self.model}) error: {e}")
            raise TierInvocationError(self.name, str(e)) from e

        text = _response_text(response.content)
        if not text.strip():
            raise TierInvocationError(self.name, "empty response")

        return parse_vision_response(text, sheet.template, self.name, self.default_confidence)

    def get_info(self) -> Dict[str, Any]:
        return {
            "tier": self.name,
            "remote": self.remote,
            "model": self.model,
            "temperature": self.temperature,
            "timeout": self.timeout,
        }


class OpenAICompatibleVisionTier(VisionTier):
    """
    Vision tier for OpenAI-compatible APIs (Groq Cloud, OpenRouter).
    """

    def __init__(
        self,
        tier_name: str,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs
    ):
        super().__init__(tier_name=tier_name, model=model, **kwargs)
        self.api_key = api_key
        self.base_url = base_url
        logger.info(f"Vision tier initialized: tier={tier_name}, model={model}, base_url={base_url}")

    def _create_llm(self) -> BaseChatModel:
        if not self.api_key:
            raise TierInvocationError(self.name, "API key is not configured")

        return ChatOpenAI(
            model=self.model,
            temperature=self.temperature,
            api_key=self.api_key,
            base_url=self.base_url,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
            max_retries=0,
        )


class OllamaVisionTier(VisionTier):
    """
    Ollama vision tier for local inference.
    """

    def __init__(
        self,
        model: str = "llama3.2-vision:latest",
        base_url: str = "http://localhost:11434",
        tier_name: str = VisionProvider.OLLAMA.value,
        **kwargs
    ):
        super().__init__(tier_name=tier_name, model=model, **kwargs)
        self.base_url = base_url
        logger.info(f"Vision tier initialized: tier={tier_name}, model={model}, base_url={base_url}")

    def _create_llm(self) -> BaseChatModel:
        return ChatOllama(
            model=self.model,
            temperature=self.temperature,
            base_url=self.base_url,
            num_predict=self.max_tokens,
            format="json",
            client_kwargs={"timeout": self.timeout},
        )


def _vision_kwargs(config: Settings) -> Dict[str, Any]:
    return {
        "temperature": config.VISION_TEMPERATURE,
        "max_tokens": config.VISION_MAX_TOKENS,
        "default_confidence": config.VISION_DEFAULT_CONFIDENCE,
        "timeout": config.TIER_TIMEOUT_SECONDS,
    }


def _create_groq(config: Settings) -> DetectionTier:
    return OpenAICompatibleVisionTier(
        tier_name=VisionProvider.GROQ.value,
        model=config.GROQ_VISION_MODEL,
        api_key=config.GROQ_API_KEY,
        base_url=config.GROQ_BASE_URL,
        **_vision_kwargs(config)
    )


def _create_openrouter(config: Settings) -> DetectionTier:
    return OpenAICompatibleVisionTier(
        tier_name=VisionProvider.OPENROUTER.value,
        model=config.OPENROUTER_VISION_MODEL,
        api_key=config.OPENROUTER_API_KEY,
        base_url=config.OPENROUTER_BASE_URL,
        **_vision_kwargs(config)
    )


def _create_ollama(config: Settings) -> DetectionTier:
    return OllamaVisionTier(
        model=config.OLLAMA_VISION_MODEL,
        base_url=config.OLLAMA_BASE_URL,
        **_vision_kwargs(config)
    )


class TierFactory:
    """
    Factory class for creating detection tiers.
    The only place where tier names map to implementations.

    Registrations are process-global for the class they are made on.
    A subclass registers into its own copy, leaving the parent untouched.
    """

    _builders: Dict[str, Callable[[Settings], DetectionTier]] = {
        CV_TIER: CVTier.from_settings,
        VisionProvider.GROQ.value: _create_groq,
        VisionProvider.OPENROUTER.value: _create_openrouter,
        VisionProvider.OLLAMA.value: _create_ollama,
    }

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], DetectionTier]) -> None:
        """Register an additional tier implementation"""
        cls._builders = {**cls._builders, name.lower(): builder}

    @classmethod
    def unregister(cls, name: str) -> None:
        """Remove a tier registered on this class"""
        cls._builders = {k: v for k, v in cls._builders.items() if k != name.lower()}

    @classmethod
    def available(cls) -> List[str]:
        return sorted(cls._builders)

    @classmethod
    def create(cls, name: str, config: Settings = None) -> DetectionTier:
        """
        Create a detection tier by name.

        Raises:
            ConfigurationError: If no tier is registered under the name
        """
        config = config or default_settings
        builder = cls._builders.get(name.lower())
        if builder is None:
            raise ConfigurationError(
                f"Unknown detection tier: {name}. Supported: {', '.join(cls.available())}"
            )
        logger.info(f"Creating detection tier: {name}")
        return builder(config)

    @classmethod
    def build(cls, names: List[str], config: Settings = None) -> List[DetectionTier]:
        """Create tiers in the given order"""
        return [cls.create(name, config) for name in names]


def create_tier(name: str, config: Settings = None) -> DetectionTier:
    """Create a detection tier by name"""
    return TierFactory.create(name, config)


def build_tiers(names: List[str], config: Settings = None) -> List[DetectionTier]:
    """Create the configured tier chain"""
    return TierFactory.build(names, config)
