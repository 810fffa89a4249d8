"""
Tests for the click command.

The controller factory is monkeypatched so no provider is contacted.
"""

import json

import pytest
from click.testing import CliRunner

from conftest import FakeProvider, make_annotations
from ux_critique import cli
from ux_critique.capture import ScreenshotCapturer
from ux_critique.cli import EXIT_QUALITY_FAILED, main
from ux_critique.pipeline import PipelineController

IMAGE = "data:image/png;base64,iVBORw0KGgo="
PROMPT = "Review the checkout page for conversion problems"


def parse_json(output: str) -> dict:
    return json.loads(output[output.index("{"):])


@pytest.fixture
def runner(tmp_path, monkeypatch):
    # Keep a developer's .env out of the run
    monkeypatch.chdir(tmp_path)
    return CliRunner()


@pytest.fixture
def use_providers(monkeypatch, fast_config, chain):
    def _use(*providers):
        controller = PipelineController(fast_config, chain(*providers))
        monkeypatch.setattr(cli, "_build_controller", lambda *args: controller)
        return controller
    return _use


class TestMain:

    def test_json_output_on_success(self, runner, use_providers):
        use_providers(
            FakeProvider("anthropic", make_annotations(16, "c")),
            FakeProvider("openai", make_annotations(16, "g")),
        )
        result = runner.invoke(main, [IMAGE, "-p", PROMPT, "--output", "json"])

        assert result.exit_code == 0
        payload = parse_json(result.output)
        assert payload["success"] is True
        assert len(payload["annotations"]) == 16
        assert payload["annotations"][0]["business_impact"] is not None

    def test_quality_failure_exit_code(self, runner, use_providers):
        use_providers(FakeProvider("anthropic", make_annotations(5, "c")))
        result = runner.invoke(main, [IMAGE, "-p", PROMPT, "--output", "json"])

        assert result.exit_code == EXIT_QUALITY_FAILED
        payload = parse_json(result.output)
        assert payload["success"] is False
        assert payload["violations"]

    def test_rich_output(self, runner, use_providers):
        use_providers(
            FakeProvider("anthropic", make_annotations(16, "c")),
            FakeProvider("openai", make_annotations(16, "g")),
        )
        result = runner.invoke(main, [IMAGE, "-p", PROMPT])

        assert result.exit_code == 0
        assert "PASSED" in result.output
        assert "Provenance" in result.output

    def test_invalid_request(self, runner, use_providers):
        use_providers(FakeProvider("anthropic", make_annotations(16, "c")))
        result = runner.invoke(main, [IMAGE, "-p", "short"])

        assert result.exit_code == 1
        assert "Prompt too short" in result.output

    def test_requires_image_or_url(self, runner, use_providers):
        use_providers(FakeProvider("anthropic", make_annotations(16, "c")))
        result = runner.invoke(main, ["-p", PROMPT])

        assert result.exit_code == 1
        assert "at least one IMAGE" in result.output

    def test_prompt_is_required(self, runner):
        result = runner.invoke(main, [IMAGE])
        assert result.exit_code == 2
        assert "--prompt" in result.output

    def test_url_capture_is_analysed(self, runner, use_providers, monkeypatch, tmp_path):
        anthropic = FakeProvider("anthropic", make_annotations(16, "c"))
        use_providers(anthropic, FakeProvider("openai", make_annotations(16, "g")))
        shot = tmp_path / "checkout.png"

        async def fake_capture(self, url, selector=None, wait_for=None, **kwargs):
            return shot

        monkeypatch.setattr(ScreenshotCapturer, "capture", fake_capture)
        result = runner.invoke(main, ["-p", PROMPT, "--url", "https://shop.example.com/checkout", "--output", "json"])

        assert result.exit_code == 0
        assert anthropic.calls[0]["images"] == [str(shot)]


def test_capture_path_from_url_and_selector(tmp_path):
    path = ScreenshotCapturer(output_dir=tmp_path)._generate_path(
        "https://shop.example.com/checkout.html", "[data-step='payment']"
    )

    assert path.parent == tmp_path
    assert path.name.startswith("screenshot_")
    assert path.name.endswith("_checkout_data-steppayment.png")
