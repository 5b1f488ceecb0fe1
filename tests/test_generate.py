from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image

from flyergen.config import ConfigError, FlyerGenConfig, PromptSettings
from flyergen.errors import NoProviderAvailable, StorageError, UnsupportedAspectRatio
from flyergen.gen.fragments import InMemoryFragmentStore, PromptFragment
from flyergen.gen.generate import build_fragment_store, generate_image, persist_result
from flyergen.gen.registry import ProviderRegistry, StaticConfigSource
from flyergen.gen.types import GenerationResult, ProviderEntry


def _fal_session() -> MagicMock:
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = {"images": [{"url": "https://fal/img.png", "width": 1024, "height": 576}], "seed": 1}
    session = MagicMock()
    session.post.return_value = resp
    return session


def _registry(session: MagicMock, *entries: ProviderEntry) -> ProviderRegistry:
    if not entries:
        entries = (ProviderEntry(provider_id="fal-qwen", api_key="key", priority=101),)
    return ProviderRegistry(StaticConfigSource(entries), session=session)


class TestGenerateImage:
    def test_single_provider_end_to_end(self) -> None:
        session = _fal_session()
        result = generate_image(
            "sunset",
            "16:9",
            "CORPORATE_EVENT",
            {},
            "No Style",
            registry=_registry(session),
            fragment_store=InMemoryFragmentStore(),
            settings=FlyerGenConfig(),
        )

        assert result.provider_used == "fal-qwen"
        assert result.error is None
        assert result.image == "https://fal/img.png"
        sent = session.post.call_args.kwargs["json"]
        assert sent["prompt"].startswith("Corporate Event flyer theme, sunset, no text")
        assert sent["image_size"] == "landscape_16_9"
        assert result.prompt == sent["prompt"]

    def test_aspect_ratio_spelling_normalized(self) -> None:
        session = _fal_session()
        result = generate_image(
            "sunset", "16x9", registry=_registry(session), fragment_store=InMemoryFragmentStore(), settings=FlyerGenConfig()
        )
        assert result.aspect_ratio_actual == "16:9"

    def test_quality_defaults_from_settings(self) -> None:
        session = _fal_session()
        settings = FlyerGenConfig.model_validate({"generation": {"default_quality": "fast"}})
        generate_image(
            "sunset", "1:1", registry=_registry(session), fragment_store=InMemoryFragmentStore(), settings=settings
        )
        assert session.post.call_args.kwargs["json"]["num_inference_steps"] == 15

    def test_preferred_provider_routes_call(self) -> None:
        session = MagicMock()
        resp = MagicMock()
        resp.status_code = 200
        resp.json.return_value = {"data": [{"url": "https://ideogram/img.png"}]}
        session.post.return_value = resp
        registry = _registry(
            session,
            ProviderEntry(provider_id="fal-qwen", api_key="key", priority=101),
            ProviderEntry(provider_id="ideogram", api_key="key", priority=100),
        )
        result = generate_image(
            "sunset",
            "1:1",
            preferred_provider="ideogram",
            registry=registry,
            fragment_store=InMemoryFragmentStore(),
            settings=FlyerGenConfig(),
        )
        assert result.provider_used == "ideogram"

    def test_prompt_fits_provider_limit(self) -> None:
        long_fragment = PromptFragment(category="event_type", subcategory="CONCERT", content="neon lights " * 100)
        session = MagicMock()
        resp = MagicMock()
        resp.status_code = 200
        resp.content = b"\x89PNG"
        resp.headers = {"content-type": "image/png"}
        session.post.return_value = resp
        registry = _registry(session, ProviderEntry(provider_id="huggingface", api_key="key", priority=1))

        result = generate_image(
            "sunset",
            "1:1",
            "CONCERT",
            registry=registry,
            fragment_store=InMemoryFragmentStore([long_fragment]),
            settings=FlyerGenConfig(),
        )
        assert len(result.prompt) <= 500
        assert result.prompt.endswith("professional event flyer design")

    def test_unsupported_ratio_no_network(self) -> None:
        session = _fal_session()
        with pytest.raises(UnsupportedAspectRatio):
            generate_image(
                "sunset", "3:7", registry=_registry(session), fragment_store=InMemoryFragmentStore(), settings=FlyerGenConfig()
            )
        session.post.assert_not_called()

    def test_no_provider(self) -> None:
        session = _fal_session()
        registry = _registry(session, ProviderEntry(provider_id="fal-qwen", api_key=None, priority=1))
        with pytest.raises(NoProviderAvailable):
            generate_image("sunset", "1:1", registry=registry, settings=FlyerGenConfig())


class TestBuildFragmentStore:
    def test_yaml_overrides_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "fragments.yaml"
        path.write_text(
            "fragments:\n  - {category: event_type, subcategory: WEDDING, content: beach wedding}\n",
            encoding="utf-8",
        )
        config = FlyerGenConfig(prompts=PromptSettings(fragments_file=path))
        fragment = build_fragment_store(config).find_active_fragment("event_type", "WEDDING")
        assert fragment is not None
        assert fragment.content == "beach wedding"

    def test_defaults_can_be_disabled(self) -> None:
        config = FlyerGenConfig(prompts=PromptSettings(use_default_fragments=False))
        assert len(build_fragment_store(config)) == 0

    def test_bad_fragments_file(self, tmp_path: Path) -> None:
        config = FlyerGenConfig(prompts=PromptSettings(fragments_file=tmp_path / "missing.yaml"))
        with pytest.raises(ConfigError):
            build_fragment_store(config)


def _result(image: object, mime_type: str = "image/png") -> GenerationResult:
    return GenerationResult(
        image=image,  # type: ignore[arg-type]
        provider_used="huggingface",
        aspect_ratio_actual="1:1",
        generation_time_ms=10,
        prompt="p",
        mime_type=mime_type,
    )


class TestPersistResult:
    def test_bytes_uploaded(self) -> None:
        storage = MagicMock()
        storage.upload.side_effect = lambda key, data, content_type: key
        key = persist_result(_result(b"img", "image/webp"), storage, "user-1", "abc")
        assert key == "user-1/abc.webp"
        storage.upload.assert_called_once_with("user-1/abc.webp", b"img", "image/webp")

    def test_url_downloaded_first(self) -> None:
        storage = MagicMock()
        storage.upload.side_effect = lambda key, data, content_type: key
        session = MagicMock()
        download = MagicMock()
        download.content = b"jpeg-bytes"
        download.headers = {"content-type": "image/jpeg; charset=binary"}
        session.get.return_value = download

        key = persist_result(_result("https://img/1"), storage, "u", "i", session=session)
        assert key == "u/i.jpg"
        storage.upload.assert_called_once_with("u/i.jpg", b"jpeg-bytes", "image/jpeg")

    def test_download_failure(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        with pytest.raises(StorageError):
            persist_result(_result("https://img/1"), MagicMock(), "u", "i", session=session)

    def test_webp_conversion(self) -> None:
        buf = io.BytesIO()
        Image.new("RGB", (16, 8), "navy").save(buf, format="PNG")
        storage = MagicMock()
        storage.upload.side_effect = lambda key, data, content_type: key

        key = persist_result(_result(buf.getvalue(), "image/png"), storage, "u", "i", webp=True)

        assert key == "u/i.webp"
        _, data, content_type = storage.upload.call_args.args
        assert content_type == "image/webp"
        with Image.open(io.BytesIO(data)) as img:
            assert img.format == "WEBP"
            assert img.size == (16, 8)

    def test_webp_conversion_keeps_undecodable_bytes(self) -> None:
        storage = MagicMock()
        storage.upload.side_effect = lambda key, data, content_type: key
        key = persist_result(_result(b"not an image", "image/png"), storage, "u", "i", webp=True)
        assert key == "u/i.png"
        storage.upload.assert_called_once_with("u/i.png", b"not an image", "image/png")
