import importlib.util
import sys
from pathlib import Path

from clip_ingest.dependencies import build_pipeline
from tests.conftest import SECURE_URL, queue_happy_path
from tests.mocks.ffprobe_process import FakeFfprobe, install_ffprobe
from tests.mocks.media import FakeCaptureDevice

PROJECT_ROOT = Path(__file__).resolve().parents[3]
MODULE_PATH = PROJECT_ROOT / "scripts" / "ingest_video.py"
SPEC = importlib.util.spec_from_file_location("ingest_video_module", MODULE_PATH)
ingest_video = importlib.util.module_from_spec(SPEC)
assert SPEC and SPEC.loader
sys.modules["ingest_video_module"] = ingest_video
SPEC.loader.exec_module(ingest_video)


def wire_script(monkeypatch, settings, shared_runtime) -> None:
    monkeypatch.setattr(ingest_video, "load_settings", lambda: settings)

    def _build(cfg):
        return build_pipeline(cfg, capture_device=FakeCaptureDevice(), shared_runtime=shared_runtime)

    monkeypatch.setattr(ingest_video, "build_pipeline", _build)


def write_clip(tmp_path: Path, name: str = "intro.mp4") -> Path:
    path = tmp_path / name
    path.write_bytes(b"\x00" * 2048)
    return path


def test_guess_content_type_uses_file_name():
    assert ingest_video.guess_content_type(Path("clip.mp4")) == "video/mp4"
    assert ingest_video.guess_content_type(Path("clip.unknownext")) is None


def test_main_reports_missing_file(tmp_path, capsys):
    exit_code = ingest_video.main([str(tmp_path / "missing.mp4")])

    assert exit_code == 2
    assert "is not a file" in capsys.readouterr().err


def test_main_prints_reference_on_success(
    monkeypatch, tmp_path, capsys, settings, shared_runtime, ffprobe, http_client
):
    wire_script(monkeypatch, settings, shared_runtime)
    queue_happy_path(http_client)
    clip = write_clip(tmp_path)

    exit_code = ingest_video.main([str(clip)])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert f"url={SECURE_URL}" in out
    assert "public_id=first-impressions/clip" in out
    assert shared_runtime.references == 0


def test_main_maps_ingest_errors_to_exit_code(
    monkeypatch, tmp_path, capsys, settings, shared_runtime, http_client
):
    wire_script(monkeypatch, settings, shared_runtime)
    install_ffprobe(monkeypatch, FakeFfprobe(duration=45.0))
    clip = write_clip(tmp_path)

    exit_code = ingest_video.main([str(clip), "--content-type", "video/mp4"])

    assert exit_code == 2
    err = capsys.readouterr().err
    assert "ingest failed: duration_exceeded" in err
    assert http_client.calls == []
