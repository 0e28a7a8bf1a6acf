from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from creative_canvas.config import settings
from creative_canvas.errors import InvalidInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    name: str
    display_name: str
    description: str = ""


_KNOWN_MODELS = {
    "gemini-2.5-flash": ModelInfo("gemini-2.5-flash", "Gemini 2.5 Flash", "Fast and efficient model for general tasks"),
    "gemini-2.5-pro": ModelInfo("gemini-2.5-pro", "Gemini 2.5 Pro", "Advanced model for complex reasoning tasks"),
    "gemini-flash-latest": ModelInfo(
        "gemini-flash-latest", "Gemini Flash Latest", "Latest flash model with newest capabilities"
    ),
    "gemini-flash-lite-latest": ModelInfo(
        "gemini-flash-lite-latest", "Gemini Flash Lite Latest", "Lightweight model for quick tasks"
    ),
}


def model_info(name: str) -> ModelInfo:
    name = name.replace("models/", "")
    return _KNOWN_MODELS.get(name) or ModelInfo(name=name, display_name=name)


ModelListener = Callable[[ModelInfo], None]


class ModelSelector:
    """Cycles through the configured text models; callers pass `current.name` into each request."""

    def __init__(self, models: Sequence[str] | None = None, index: int = 0) -> None:
        names = list(models if models is not None else settings.gemini_text_models)
        if not names:
            raise InvalidInput("at least one model is required")
        self._models = [model_info(n) for n in names]
        self._index = index if 0 <= index < len(self._models) else 0
        self._listeners: list[ModelListener] = []

    @property
    def models(self) -> list[ModelInfo]:
        return list(self._models)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> ModelInfo:
        return self._models[self._index]

    def advance(self) -> ModelInfo:
        self._index = (self._index + 1) % len(self._models)
        model = self.current
        logger.info("switched to %s", model.name)
        for listener in list(self._listeners):
            listener(model)
        return model

    def subscribe(self, listener: ModelListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
