from __future__ import annotations

import base64
import io

import pytest
from PIL import Image

from conftest import make_settings
from studio.core.errors import EncodingError
from studio.models import JobProvider, JobType
from studio.schemas import GenerationRequest
from studio.services.providers.images import JPEG_DATA_URI_PREFIX, normalize_jpeg, to_data_uri
from studio.services.providers.quirks import runware_quirks
from studio.services.providers.requests import FalAiRequest, RunwareTask, WaveSpeedRequest, runware_envelope
from studio.services.providers.runware import RunwareClient
from studio.services.providers.sizes import fal_image_size, resolve_dimensions, video_dimensions
from studio.services.providers.storage import StorageUploader, sanitize_model_name


def _png_bytes(size=(4, 2), color="red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _request(**overrides) -> GenerationRequest:
    values = {
        "user_id": "user-1",
        "provider": JobProvider.runware,
        "model": "google:4@1",
        "prompt": "a lighthouse at dusk",
        "aspect_ratio": "16:9",
    }
    values.update(overrides)
    return GenerationRequest(**values)


@pytest.fixture
def runware() -> RunwareClient:
    return RunwareClient(None, make_settings())


# ── Sizes ──

class TestSizes:
    def test_known_model_and_ratio(self):
        assert resolve_dimensions("google:4@1", "16:9") == (1344, 768)

    def test_model_match_is_case_insensitive_and_most_specific_first(self):
        assert resolve_dimensions("GOOGLE:4@2", "1:1") == (2048, 2048)

    def test_unknown_model_uses_generic_table(self):
        assert resolve_dimensions("acme:1@1", "3:2") == (1248, 832)

    def test_unknown_ratio_falls_back_to_square(self):
        assert resolve_dimensions("google:4@1", "21:9") == (1024, 1024)

    def test_auto_lets_provider_choose(self):
        assert resolve_dimensions("midjourney:3@1", "auto") is None

    def test_fal_sizes_follow_ratio(self):
        assert fal_image_size("16:9") == (1024, 576)
        assert fal_image_size("9:16") == (576, 1024)
        assert fal_image_size("not-a-ratio") == (1024, 1024)

    def test_video_dimensions(self):
        assert video_dimensions("1080p", "9:16") == (1080, 1920)
        assert video_dimensions("4k", None) == (1280, 720)


# ── Images ──

class TestImages:
    def test_exif_orientation_is_applied(self):
        buffer = io.BytesIO()
        exif = Image.Exif()
        exif[0x0112] = 6
        Image.new("RGB", (4, 2), "blue").save(buffer, format="JPEG", exif=exif)

        with Image.open(io.BytesIO(normalize_jpeg(buffer.getvalue()))) as img:
            assert img.format == "JPEG"
            assert img.size == (2, 4)

    def test_data_uri_prefix(self):
        uri = to_data_uri(_png_bytes())
        assert uri.startswith(JPEG_DATA_URI_PREFIX)
        base64.b64decode(uri[len(JPEG_DATA_URI_PREFIX):], validate=True)

    def test_garbage_bytes_raise_encoding_error(self):
        with pytest.raises(EncodingError):
            normalize_jpeg(b"definitely not an image")

    def test_request_rejects_invalid_base64(self):
        request = _request(source_image_base64="data:image/png;base64,@@@")
        with pytest.raises(EncodingError):
            request.source_image_bytes()


# ── Typed requests ──

class TestRunwareTask:
    def test_to_wire_uses_camel_case_and_drops_none(self):
        task = RunwareTask(task_type="imageInference", task_uuid="t-1", model="m:1@1", positive_prompt="cat")
        assert task.to_wire() == {
            "taskType": "imageInference",
            "taskUUID": "t-1",
            "model": "m:1@1",
            "positivePrompt": "cat",
        }

    def test_envelope_leads_with_authentication(self):
        task = RunwareTask(task_type="getResponse", task_uuid="t-1")
        envelope = runware_envelope("secret", task)
        assert envelope[0] == {"taskType": "authentication", "apiKey": "secret"}
        assert envelope[1] == {"taskType": "getResponse", "taskUUID": "t-1"}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"task_type": "teleport", "task_uuid": "t"},
            {"task_type": "imageInference", "task_uuid": "t"},
            {"task_type": "imageInference", "task_uuid": "t", "model": "m", "width": 512},
            {"task_type": "imageInference", "task_uuid": "t", "model": "m", "strength": 1.5},
            {"task_type": "imageUpload", "task_uuid": "t"},
        ],
    )
    def test_invalid_tasks_are_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RunwareTask(**kwargs)


class TestWaveSpeedAndFalRequests:
    def test_wavespeed_webhook_goes_in_query(self):
        request = WaveSpeedRequest(endpoint="google/nano-banana/edit", webhook_url="https://jobs.test/hook?provider=wavespeed")
        assert request.url("https://api.wavespeed.ai/api/v3/") == (
            "https://api.wavespeed.ai/api/v3/google/nano-banana/edit"
            "?webhook=https%3A%2F%2Fjobs.test%2Fhook%3Fprovider%3Dwavespeed"
        )

    def test_wavespeed_body(self):
        request = WaveSpeedRequest(endpoint="wavespeed-ai/flux", prompt="", aspect_ratio="1:1", extra={"seed": 7})
        assert request.to_wire() == {
            "output_format": "jpeg",
            "enable_sync_mode": False,
            "enable_base64_output": False,
            "aspect_ratio": "1:1",
            "seed": 7,
        }

    def test_wavespeed_rejects_both_image_fields(self):
        with pytest.raises(ValueError):
            WaveSpeedRequest(endpoint="x/y", image="data:...", images=["https://cdn.test/a.jpg"])

    def test_fal_request(self):
        request = FalAiRequest(
            model="fal-ai/kling-video",
            prompt="dance",
            video_url="https://cdn.test/ref.mp4",
            character_orientation="video",
            keep_original_sound=True,
            webhook_url="https://jobs.test/hook",
        )
        assert request.url("https://queue.fal.run") == (
            "https://queue.fal.run/fal-ai/kling-video?fal_webhook=https%3A%2F%2Fjobs.test%2Fhook"
        )
        assert request.to_wire() == {
            "prompt": "dance",
            "video_url": "https://cdn.test/ref.mp4",
            "character_orientation": "video",
            "keep_original_sound": True,
        }


# ── Runware builders and quirks ──

class TestRunwareBuilders:
    def test_image_task_with_webhook(self, runware):
        task = runware.build_image_task(_request(), "task-1", "https://jobs.test/hook", None)
        wire = task.to_wire()
        assert wire["taskUUID"] == "task-1"
        assert (wire["width"], wire["height"]) == (1344, 768)
        assert wire["deliveryMethod"] == "async"
        assert wire["webhookURL"] == "https://jobs.test/hook"
        assert wire["numberResults"] == 1
        assert wire["includeCost"] is True

    def test_image_to_image_defaults_to_reference_images(self, runware):
        task = runware.build_image_task(_request(), "task-1", None, _png_bytes())
        assert task.reference_images and task.reference_images[0].startswith(JPEG_DATA_URI_PREFIX)
        assert task.seed_image is None
        assert task.delivery_method is None

    def test_seed_image_family(self, runware):
        request = _request(model="runware:101@1", options={"image_to_image_method": "seedImage", "strength": 0.4})
        task = runware.build_image_task(request, "task-1", None, _png_bytes())
        assert task.seed_image.startswith(JPEG_DATA_URI_PREFIX)
        assert task.strength == 0.4
        assert task.reference_images is None

    def test_openai_quality_quirk(self, runware):
        task = runware.build_image_task(_request(model="openai:1@1"), "task-1", None, None)
        assert task.provider_settings == {"openai": {"quality": "medium"}}
        assert "openai_image_quality" in runware_quirks.matching(task)

    def test_text_only_model_drops_image_inputs(self, runware):
        task = runware.build_image_task(_request(model="runware:201@1"), "task-1", None, _png_bytes())
        assert task.reference_images is None
        assert (task.output_format, task.output_quality) == ("JPEG", 85)

    def test_provider_chosen_dimensions(self, runware):
        task = runware.build_image_task(
            _request(model="midjourney:3@1", options={"requires_dimensions": False}), "task-1", None, None
        )
        assert task.width is None and task.height is None

    @pytest.mark.asyncio
    async def test_video_quirks(self, runware):
        request = _request(
            model="bytedance:2@1",
            job_type=JobType.video,
            resolution="720p",
            aspect_ratio="9:16",
            duration=5,
        )
        task = await runware.build_video_task(request, "task-1", None, None)
        assert task.task_type == "videoInference"
        assert (task.width, task.height) == (720, 1280)
        assert task.output_format == "MP4"
        assert task.delivery_method == "async"
        assert task.output_quality == 85
        assert task.number_results is None

    @pytest.mark.asyncio
    async def test_veo_generate_audio(self, runware):
        request = _request(model="google:3@1", job_type=JobType.video, options={"generate_audio": False})
        task = await runware.build_video_task(request, "task-1", None, None)
        assert task.provider_settings == {"google": {"generateAudio": False}}

    def test_quirks_do_not_mutate_input(self):
        original = RunwareTask(task_type="imageInference", task_uuid="t", model="openai:1@1")
        runware_quirks.apply(_request(model="openai:1@1"), original)
        assert original.provider_settings is None


# ── Storage ──

def test_storage_object_path_sanitizes_model_name():
    uploader = StorageUploader(None, make_settings())
    assert sanitize_model_name("Nano Banana / Pro") == "Nano_Banana___Pro"
    path = uploader.object_path("user-1", "flux:1@1")
    assert path.startswith("user-1/")
    assert path.endswith("_flux_1_1.jpg")
