from __future__ import annotations

import threading
import time

import pytest
import requests

from lector.engine import PlaybackState, Utterance
from lector.voicevox import (
    PlayerProcessError,
    VoiceVoxClient,
    VoiceVoxError,
    VoiceVoxSpeechEngine,
    VoiceVoxUnavailableError,
    normalize_base_url,
    rate_to_speed_scale,
)


class DummyResponse:
    def __init__(self, status_code: int = 200, payload=None, content: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = "error body"

    def json(self):
        return self._payload


class DummySession:
    def __init__(self, responses: list[DummyResponse]) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, dict]] = []
        self.closed = False

    def post(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        return self.responses.pop(0)

    def close(self) -> None:
        self.closed = True


def _client_with(session: DummySession) -> VoiceVoxClient:
    client = VoiceVoxClient("127.0.0.1:50021", speaker_id=3, timeout=5.0)
    client._session = session
    return client


def test_normalize_base_url() -> None:
    assert normalize_base_url("localhost") == "http://localhost:50021"
    assert normalize_base_url("https://tts.example/") == "https://tts.example:50021"
    assert normalize_base_url("http://host:1234") == "http://host:1234"
    with pytest.raises(ValueError):
        normalize_base_url("  ")
    with pytest.raises(ValueError):
        normalize_base_url("ftp://host")


def test_rate_maps_to_speed_scale() -> None:
    assert rate_to_speed_scale(0.0) == pytest.approx(0.5)
    assert rate_to_speed_scale(0.5) == pytest.approx(1.0)
    assert rate_to_speed_scale(0.75) == pytest.approx(1.5)
    assert rate_to_speed_scale(1.0) == pytest.approx(2.0)
    assert rate_to_speed_scale(4.0) == pytest.approx(2.0)


def test_synthesize_wav_sets_speed_scale() -> None:
    session = DummySession(
        [
            DummyResponse(payload={"speedScale": 1.0, "accent_phrases": []}),
            DummyResponse(content=b"RIFFwav"),
        ]
    )
    client = _client_with(session)

    wav = client.synthesize_wav("Hello.", speed_scale=1.5)

    assert wav == b"RIFFwav"
    query_url, query_kwargs = session.calls[0]
    synth_url, synth_kwargs = session.calls[1]
    assert query_url == "http://127.0.0.1:50021/audio_query"
    assert query_kwargs["params"] == {"text": "Hello.", "speaker": 3}
    assert synth_url == "http://127.0.0.1:50021/synthesis"
    assert synth_kwargs["json"]["speedScale"] == 1.5
    assert synth_kwargs["timeout"] == 5.0
    client.close()
    assert session.closed


def test_unreachable_engine_raises_unavailable() -> None:
    class FailingSession(DummySession):
        def post(self, url: str, **kwargs):
            raise requests.ConnectionError("refused")

    client = _client_with(FailingSession([]))
    with pytest.raises(VoiceVoxUnavailableError):
        client.synthesize_wav("Hello.")


def test_error_status_raises() -> None:
    client = _client_with(DummySession([DummyResponse(status_code=422)]))
    with pytest.raises(VoiceVoxError, match="/audio_query failed with status 422"):
        client.build_audio_query("Hello.")


class FakeClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, float | None]] = []
        self.closed = False

    def synthesize_wav(self, text: str, *, speed_scale: float | None = None) -> bytes:
        self.calls.append((text, speed_scale))
        if self.error is not None:
            raise self.error
        return b"RIFFwav"

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    def __init__(self, block: bool = False, returncode: int = 0) -> None:
        self.block = block
        self._finish = threading.Event()
        self._final_returncode = returncode
        self.returncode: int | None = None
        self.stdin_data: bytes | None = None
        self.signals: list[int] = []
        self.terminated = False

    def communicate(self, data: bytes | None = None, timeout: float | None = None):
        self.stdin_data = data
        if self.block:
            self._finish.wait(5)
        if self.returncode is None:
            self.returncode = self._final_returncode
        return None, None

    def poll(self) -> int | None:
        return self.returncode

    def send_signal(self, sig: int) -> None:
        self.signals.append(sig)

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15
        self._finish.set()


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def on_utterance_started(self, utterance: Utterance) -> None:
        self.events.append(("started", utterance.text))

    def on_utterance_finished(self, utterance: Utterance) -> None:
        self.events.append(("finished", utterance.text))

    def on_word_range(self, start: int, end: int, utterance: Utterance) -> None:
        self.events.append(("range", utterance.text))

    def on_error(self, error: Exception) -> None:
        self.events.append(("error", type(error).__name__))


def _pump(engine: VoiceVoxSpeechEngine, recorder: Recorder, count: int, deadline: float = 5.0) -> None:
    end = time.monotonic() + deadline
    while len(recorder.events) < count and time.monotonic() < end:
        engine.dispatch_pending(timeout=0.05)


def _engine(monkeypatch: pytest.MonkeyPatch, client: FakeClient, process: FakeProcess | None = None):
    commands: list[list[str]] = []

    def fake_popen(cmd, stdin, stdout, stderr):
        commands.append(cmd)
        if process is None:
            raise FileNotFoundError(cmd[0])
        return process

    monkeypatch.setattr("lector.voicevox.subprocess.Popen", fake_popen)
    engine = VoiceVoxSpeechEngine(client, ffplay_path="/usr/bin/ffplay")
    recorder = Recorder()
    engine.bind(recorder)
    return engine, recorder, commands


def test_engine_plays_and_reports_on_dispatch(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeClient()
    process = FakeProcess()
    engine, recorder, commands = _engine(monkeypatch, client, process)
    engine.set_rate(0.75)

    engine.speak(Utterance("Hello there."))
    assert engine.playback_state is PlaybackState.PLAYING
    _pump(engine, recorder, 2)

    assert recorder.events == [("started", "Hello there."), ("finished", "Hello there.")]
    assert client.calls == [("Hello there.", pytest.approx(1.5))]
    assert process.stdin_data == b"RIFFwav"
    assert commands[0][0] == "/usr/bin/ffplay"
    assert "-nodisp" in commands[0]
    assert engine.playback_state is PlaybackState.IDLE


def test_stop_acknowledges_synchronously_and_drops_late_events(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeProcess(block=True)
    engine, recorder, _commands = _engine(monkeypatch, FakeClient(), process)

    engine.speak(Utterance("Long sentence."))
    _pump(engine, recorder, 1)
    assert recorder.events == [("started", "Long sentence.")]

    engine.stop()

    assert recorder.events[-1] == ("finished", "Long sentence.")
    assert process.terminated
    time.sleep(0.1)
    assert engine.dispatch_pending(timeout=0.1) == 0
    assert len(recorder.events) == 2
    assert engine.playback_state is PlaybackState.IDLE


def test_pause_and_resume_signal_the_player(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeProcess(block=True)
    engine, recorder, _commands = _engine(monkeypatch, FakeClient(), process)
    engine.speak(Utterance("Paused sentence."))
    _pump(engine, recorder, 1)

    engine.pause()
    assert engine.playback_state is PlaybackState.PAUSED
    engine.resume()
    assert engine.playback_state is PlaybackState.PLAYING
    engine.close()

    assert len(process.signals) >= 2
    assert engine.client.closed


def test_synthesis_failure_is_reported_as_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeClient(error=VoiceVoxUnavailableError("engine down"))
    engine, recorder, commands = _engine(monkeypatch, client, FakeProcess())

    engine.speak(Utterance("Unheard."))
    _pump(engine, recorder, 1)

    assert recorder.events == [("error", "VoiceVoxUnavailableError")]
    assert commands == []
    assert engine.playback_state is PlaybackState.IDLE


def test_missing_player_is_reported_as_error(monkeypatch: pytest.MonkeyPatch) -> None:
    engine, recorder, _commands = _engine(monkeypatch, FakeClient(), process=None)

    engine.speak(Utterance("Unplayed."))
    _pump(engine, recorder, 1)

    assert recorder.events == [("error", PlayerProcessError.__name__)]


def test_player_failure_exit_status(monkeypatch: pytest.MonkeyPatch) -> None:
    engine, recorder, _commands = _engine(monkeypatch, FakeClient(), FakeProcess(returncode=1))

    engine.speak(Utterance("Bad audio."))
    _pump(engine, recorder, 2)

    assert recorder.events == [("started", "Bad audio."), ("error", "PlayerProcessError")]


def test_unexecutable_player_is_reported_as_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def denied_popen(cmd, stdin, stdout, stderr):
        raise PermissionError(13, "Permission denied", cmd[0])

    engine, recorder, _commands = _engine(monkeypatch, FakeClient(), FakeProcess())
    monkeypatch.setattr("lector.voicevox.subprocess.Popen", denied_popen)

    engine.speak(Utterance("Unplayed."))
    _pump(engine, recorder, 1)

    assert recorder.events == [("error", "PlayerProcessError")]
    assert engine.playback_state is PlaybackState.IDLE


def test_unexpected_worker_failure_is_reported_as_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeClient(error=ValueError("bad payload"))
    engine, recorder, commands = _engine(monkeypatch, client, FakeProcess())

    engine.speak(Utterance("Unheard."))
    _pump(engine, recorder, 1)

    assert recorder.events == [("error", "SpeechEngineError")]
    assert commands == []
    assert engine.playback_state is PlaybackState.IDLE


def test_pause_just_before_player_start_keeps_player_stopped(monkeypatch: pytest.MonkeyPatch) -> None:
    release = threading.Event()
    synthesized = threading.Event()

    class GatedClient(FakeClient):
        def synthesize_wav(self, text: str, *, speed_scale: float | None = None) -> bytes:
            release.wait(5)
            wav = super().synthesize_wav(text, speed_scale=speed_scale)
            synthesized.set()
            return wav

    engine, recorder, commands = _engine(monkeypatch, GatedClient(), FakeProcess())
    engine.speak(Utterance("Held sentence."))

    # The worker passes its resume gate and then waits on the lock while a
    # pause lands.
    with engine._lock:
        release.set()
        assert synthesized.wait(5)
        time.sleep(0.1)
        engine._job.resumed.clear()
        engine._state = PlaybackState.PAUSED

    time.sleep(0.1)
    assert commands == []

    engine.resume()
    _pump(engine, recorder, 2)
    assert len(commands) == 1
    assert recorder.events == [("started", "Held sentence."), ("finished", "Held sentence.")]
