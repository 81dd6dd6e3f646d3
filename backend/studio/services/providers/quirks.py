"""
Per-model request quirks.

Quirks are small pure functions ``(request, task) -> task`` registered with a
predicate. The chain applies every matching quirk in registration order and
never mutates its input; new models get a new decorator, not a new branch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Generic, Optional, TypeVar

from studio.schemas import GenerationRequest
from studio.services.providers.requests import RunwareTask

T = TypeVar("T")

Quirk = Callable[[GenerationRequest, T], T]


@dataclass(frozen=True)
class _Entry(Generic[T]):
    name: str
    model_prefix: Optional[str]
    model_contains: Optional[str]
    task_type: Optional[str]
    apply: Quirk


class QuirkChain(Generic[T]):
    def __init__(self, model_of: Callable[[T], str], task_type_of: Callable[[T], str | None]) -> None:
        self._entries: list[_Entry] = []
        self._model_of = model_of
        self._task_type_of = task_type_of

    def register(
        self,
        *,
        model_prefix: str | None = None,
        model_contains: str | None = None,
        task_type: str | None = None,
    ) -> Callable[[Quirk], Quirk]:
        def decorator(fn: Quirk) -> Quirk:
            self._entries.append(_Entry(fn.__name__, model_prefix, model_contains, task_type, fn))
            return fn

        return decorator

    def _matches(self, entry: _Entry, target: T) -> bool:
        model = (self._model_of(target) or "").lower()
        if entry.model_prefix and not model.startswith(entry.model_prefix.lower()):
            return False
        if entry.model_contains and entry.model_contains.lower() not in model:
            return False
        if entry.task_type and self._task_type_of(target) != entry.task_type:
            return False
        return True

    def matching(self, target: T) -> list[str]:
        return [entry.name for entry in self._entries if self._matches(entry, target)]

    def apply(self, request: GenerationRequest, target: T) -> T:
        for entry in self._entries:
            if self._matches(entry, target):
                target = entry.apply(request, target)
        return target


runware_quirks: QuirkChain[RunwareTask] = QuirkChain(
    model_of=lambda task: task.model or "",
    task_type_of=lambda task: task.task_type,
)


def _merge_settings(task: RunwareTask, provider: str, values: dict) -> dict:
    settings = dict(task.provider_settings or {})
    settings[provider] = {**settings.get(provider, {}), **values}
    return settings


@runware_quirks.register(model_prefix="openai:", task_type="imageInference")
def openai_image_quality(request: GenerationRequest, task: RunwareTask) -> RunwareTask:
    quality = request.options.get("quality", "medium")
    return replace(task, provider_settings=_merge_settings(task, "openai", {"quality": quality}))


@runware_quirks.register(task_type="videoInference")
def async_mp4_delivery(request: GenerationRequest, task: RunwareTask) -> RunwareTask:
    return replace(task, output_format="MP4", delivery_method="async", number_results=None)


@runware_quirks.register(model_prefix="bytedance:", task_type="videoInference")
def seedance_output_quality(request: GenerationRequest, task: RunwareTask) -> RunwareTask:
    return replace(task, output_quality=85)


@runware_quirks.register(model_prefix="runware:201@", task_type="imageInference")
def text_only_jpeg_quality(request: GenerationRequest, task: RunwareTask) -> RunwareTask:
    return replace(task, output_format="JPEG", output_quality=85, reference_images=None, seed_image=None, strength=None)


@runware_quirks.register(model_prefix="bfl:3@", task_type="imageInference")
def kontext_output_quality(request: GenerationRequest, task: RunwareTask) -> RunwareTask:
    return replace(task, output_quality=85)


@runware_quirks.register(model_prefix="google:3", task_type="videoInference")
def veo_generate_audio(request: GenerationRequest, task: RunwareTask) -> RunwareTask:
    generate_audio = bool(request.options.get("generate_audio", True))
    return replace(task, provider_settings=_merge_settings(task, "google", {"generateAudio": generate_audio}))


@runware_quirks.register(task_type="imageInference")
def provider_chosen_dimensions(request: GenerationRequest, task: RunwareTask) -> RunwareTask:
    if request.options.get("requires_dimensions", True):
        return task
    return replace(task, width=None, height=None)
