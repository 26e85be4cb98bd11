from __future__ import annotations

import json
import logging
import os

import pytest

from imagerouter.cli import main, render_markdown, save_images
from imagerouter.core.image_backends.models import ImageResult, OutputImage

from .helpers.fakes import png_bytes


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    lg = logging.getLogger("imagerouter")
    for h in list(lg.handlers):
        lg.removeHandler(h)
        h.close()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return {
        "ALLOW_MOCK_BACKEND": "true",
        "IMAGEROUTER_LOG_DIR": str(tmp_path / "logs"),
        "IMAGEROUTER_OUTPUT_DIR": str(tmp_path / "out"),
    }


def _run(capsys, argv, env):
    code = main(argv, env=env)
    return code, json.loads(capsys.readouterr().out)


def test_generate_with_mock_saves_file(capsys, cli_env):
    code, out = _run(capsys, ["generate", "sunset over hills", "--backend", "MOCK", "--width", "64", "--height", "64"], cli_env)
    assert code == 0
    assert out["backend"] == "MOCK"
    path = out["images"][0]["path"]
    assert os.path.dirname(path) == cli_env["IMAGEROUTER_OUTPUT_DIR"]
    assert os.path.basename(path).startswith("mock-")
    assert path.endswith("-0.png")
    with open(path, "rb") as f:
        assert f.read(8) == b"\x89PNG\r\n\x1a\n"
    assert any("mock image" in w for w in out["warnings"])


def test_output_dir_flag_overrides_env(capsys, cli_env, tmp_path):
    target = tmp_path / "elsewhere"
    code, out = _run(capsys, ["generate", "sunset", "--backend", "MOCK", "--width", "32", "--height", "32", "--output-dir", str(target)], cli_env)
    assert code == 0
    assert out["images"][0]["path"].startswith(str(target))


def test_edit_reads_image_from_path(capsys, cli_env, tmp_path):
    src = tmp_path / "in.png"
    src.write_bytes(png_bytes(24, 24))
    code, out = _run(capsys, ["edit", "make it blue", "--backend", "MOCK", "--image", str(src)], cli_env)
    assert code == 0
    assert out["backend"] == "MOCK"
    assert os.path.exists(out["images"][0]["path"])


def test_markdown_output(capsys, cli_env):
    code = main(["generate", "sunset", "--backend", "MOCK", "--width", "32", "--height", "32", "--markdown"], env=cli_env)
    text = capsys.readouterr().out
    assert code == 0
    assert text.startswith("# Images from MOCK")
    assert "## Warnings" in text


def test_backends_lists_status(capsys, cli_env):
    code, out = _run(capsys, ["backends"], cli_env)
    assert code == 0
    names = [b["name"] for b in out["backends"]]
    assert "RECRAFT" in names and "MOCK" in names
    assert out["configured"] == ["MOCK"]


def test_recommend(capsys, cli_env):
    code, out = _run(capsys, ["recommend", "logo for a coffee shop with text"], cli_env)
    assert code == 0
    assert out["use_case"] == "logo"
    assert out["primary"] == ["RECRAFT", "IDEOGRAM"]


def test_errors_are_reported_as_json(capsys, cli_env):
    env = dict(cli_env, ALLOW_MOCK_BACKEND="false")
    code, out = _run(capsys, ["generate", "sunset"], env)
    assert code == 1
    assert out["code"] == "not_configured"
    assert "OPENAI_API_KEY" in out["error"]


def test_capability_error_exit_code(capsys, cli_env):
    code, out = _run(capsys, ["generate", "sunset", "--backend", "MOCK", "--width", "1024"], cli_env)
    assert code == 1
    assert out["code"] == "capability_exceeded"
    assert out["backend"] == "MOCK"


def test_unwritable_output_dir_reported_as_json(capsys, cli_env, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    code, out = _run(capsys, ["generate", "sunset", "--backend", "MOCK", "--width", "32", "--height", "32", "--output-dir", str(blocker)], cli_env)
    assert code == 1
    assert out["code"] == "invalid_input"
    assert out["backend"] == "MOCK"
    assert str(blocker) in out["error"]


def test_audit_log_has_no_prompt(capsys, cli_env):
    main(["generate", "SECRET-PROMPT-42", "--backend", "MOCK", "--width", "32", "--height", "32"], env=cli_env)
    capsys.readouterr()
    with open(os.path.join(cli_env["IMAGEROUTER_LOG_DIR"], "events.jsonl"), "r", encoding="utf-8") as f:
        raw = f.read()
    assert "image.generate.completed" in raw
    assert "SECRET-PROMPT-42" not in raw


def test_save_images_naming(tmp_path):
    result = ImageResult(
        images=(OutputImage(data=b"one", format="png"), OutputImage(data=b"two", format="webp")),
        backend="OPENAI",
    )
    saved = save_images(result, str(tmp_path / "imgs"))
    names = [os.path.basename(s["path"]) for s in saved]
    assert names[0].startswith("openai-") and names[0].endswith("-0.png")
    assert names[1].endswith("-1.webp")
    assert saved[1]["size"] == 3


def test_render_markdown_without_warnings():
    text = render_markdown({"backend": "GEMINI", "model": None, "images": [{"path": "a.png", "format": "png", "size": 2048}]})
    assert "`a.png` (png, 2.0 KB)" in text
    assert "Warnings" not in text
