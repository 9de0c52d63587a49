from __future__ import annotations

import json
import logging
import queue
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from urllib.parse import urlparse

import requests

from .engine import PlaybackState, SpeechEngine, SpeechEngineError, Utterance, clamp_rate

logger = logging.getLogger(__name__)

DEFAULT_VOICEVOX_PORT = 50021


class VoiceVoxError(SpeechEngineError):
    """Raised when the VoiceVox engine returns an unexpected response."""


class VoiceVoxUnavailableError(VoiceVoxError):
    """Raised when the VoiceVox engine is unreachable."""


class PlayerProcessError(SpeechEngineError):
    """Raised when the audio player process cannot play synthesized speech."""


def normalize_base_url(base_url: str) -> str:
    trimmed = base_url.strip()
    if not trimmed:
        raise ValueError("VoiceVox base URL cannot be empty.")
    if "://" not in trimmed:
        trimmed = f"http://{trimmed}"
    parsed = urlparse(trimmed)
    if not parsed.hostname:
        raise ValueError(f"Invalid VoiceVox base URL: {base_url}")
    if parsed.scheme not in {"http", "https"}:
        raise ValueError(f"Unsupported VoiceVox URL scheme: {parsed.scheme}")
    if parsed.port is None:
        parsed = parsed._replace(netloc=f"{parsed.hostname}:{DEFAULT_VOICEVOX_PORT}")
    return parsed.geturl().rstrip("/")


def rate_to_speed_scale(rate: float) -> float:
    """Map a 0..1 speech rate onto VoiceVox speedScale 0.5..2.0 (0.5 -> 1.0)."""
    rate = clamp_rate(rate)
    if rate <= 0.5:
        return 0.5 + rate
    return 1.0 + (rate - 0.5) * 2.0


class VoiceVoxClient:
    """
    Thin wrapper around the VoiceVox HTTP API.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:50021",
        speaker_id: int = 2,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.speaker_id = speaker_id
        self.timeout = timeout
        self._session = requests.Session()

    def build_audio_query(self, text: str, *, speed_scale: float | None = None) -> dict:
        try:
            query_resp = self._session.post(
                f"{self.base_url}/audio_query",
                params={"text": text, "speaker": self.speaker_id},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise VoiceVoxUnavailableError(
                f"Failed to contact VoiceVox engine at {self.base_url}"
            ) from exc

        if query_resp.status_code != 200:
            raise VoiceVoxError(
                f"/audio_query failed with status {query_resp.status_code}: {query_resp.text}"
            )

        try:
            query_payload = query_resp.json()
        except json.JSONDecodeError as exc:
            raise VoiceVoxError("VoiceVox returned invalid JSON for /audio_query") from exc
        if not isinstance(query_payload, dict):
            raise VoiceVoxError("VoiceVox returned an unexpected /audio_query payload")

        if speed_scale is not None:
            query_payload["speedScale"] = float(speed_scale)
        return query_payload

    def synthesize_from_query(self, query_payload: dict) -> bytes:
        try:
            synth_resp = self._session.post(
                f"{self.base_url}/synthesis",
                params={"speaker": self.speaker_id},
                json=query_payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise VoiceVoxUnavailableError(
                f"Failed to contact VoiceVox engine during synthesis at {self.base_url}"
            ) from exc

        if synth_resp.status_code != 200:
            raise VoiceVoxError(
                f"/synthesis failed with status {synth_resp.status_code}: {synth_resp.text}"
            )

        return synth_resp.content

    def synthesize_wav(self, text: str, *, speed_scale: float | None = None) -> bytes:
        """
        Generate WAV audio bytes for the provided text via VoiceVox.
        """
        query_payload = self.build_audio_query(text, speed_scale=speed_scale)
        return self.synthesize_from_query(query_payload)

    def close(self) -> None:
        self._session.close()


@dataclass
class _Job:
    utterance: Utterance
    speed_scale: float
    cancelled: threading.Event = field(default_factory=threading.Event)
    resumed: threading.Event = field(default_factory=threading.Event)
    process: subprocess.Popen | None = None

    def __post_init__(self) -> None:
        self.resumed.set()


_STARTED = "started"
_FINISHED = "finished"
_ERROR = "error"


class VoiceVoxSpeechEngine(SpeechEngine):
    """
    Speaks utterances through VoiceVox and an ``ffplay`` subprocess.

    Synthesis and playback run on a worker thread. Their callbacks are queued
    and only delivered when the owner calls :meth:`dispatch_pending` on its own
    thread. ``stop`` acknowledges the cancelled utterance synchronously and
    drops whatever the worker reports for it afterwards.
    """

    def __init__(self, client: VoiceVoxClient, ffplay_path: str = "ffplay") -> None:
        super().__init__()
        self.client = client
        self.ffplay_path = ffplay_path
        self._lock = threading.Lock()
        self._job: _Job | None = None
        self._events: queue.Queue[tuple[str, _Job, Exception | None]] = queue.Queue()

    def _player_command(self) -> list[str]:
        return [
            self.ffplay_path,
            "-nodisp",
            "-autoexit",
            "-loglevel",
            "quiet",
            "-i",
            "pipe:0",
        ]

    def speak(self, utterance: Utterance) -> None:
        job = _Job(utterance=utterance, speed_scale=rate_to_speed_scale(self.rate))
        with self._lock:
            self._job = job
        self._state = PlaybackState.PLAYING
        worker = threading.Thread(target=self._run_job, args=(job,), daemon=True)
        worker.start()

    def _run_job(self, job: _Job) -> None:
        try:
            wav = self.client.synthesize_wav(job.utterance.text, speed_scale=job.speed_scale)
            while job.process is None:
                job.resumed.wait()
                with self._lock:
                    if job.cancelled.is_set():
                        return
                    if not job.resumed.is_set():
                        # Paused between the wait and taking the lock.
                        continue
                    job.process = self._start_player()
            self._events.put((_STARTED, job, None))
            try:
                job.process.communicate(wav)
            except OSError as exc:
                if not job.cancelled.is_set():
                    raise PlayerProcessError(f"Audio player failed: {exc}") from exc
            if job.cancelled.is_set():
                return
            if job.process.returncode != 0:
                raise PlayerProcessError(
                    f"Audio player exited with status {job.process.returncode}"
                )
            self._events.put((_FINISHED, job, None))
        except SpeechEngineError as exc:
            self._events.put((_ERROR, job, exc))
        except Exception as exc:
            logger.exception("VoiceVox worker failed for %r", job.utterance.text)
            self._events.put((_ERROR, job, SpeechEngineError(f"Speech worker failed: {exc}")))

    def _start_player(self) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                self._player_command(),
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            raise PlayerProcessError(f"Audio player not found: {self.ffplay_path}") from exc
        except OSError as exc:
            raise PlayerProcessError(f"Could not start audio player {self.ffplay_path}: {exc}") from exc

    def dispatch_pending(self, timeout: float = 0.0) -> int:
        """Deliver queued callbacks on the calling thread; returns how many ran."""
        delivered = 0
        block = timeout > 0
        while True:
            try:
                kind, job, error = self._events.get(block=block, timeout=timeout if block else None)
            except queue.Empty:
                return delivered
            block = False
            with self._lock:
                current = job is self._job and not job.cancelled.is_set()
                if current and kind != _STARTED:
                    self._job = None
            if not current:
                continue
            delivered += 1
            if kind == _STARTED:
                self._notify_started(job.utterance)
            elif kind == _FINISHED:
                self._state = PlaybackState.IDLE
                self._notify_finished(job.utterance)
            else:
                self._state = PlaybackState.IDLE
                logger.debug("VoiceVox engine error: %s", error)
                self._notify_error(error or SpeechEngineError("unknown engine failure"))

    def pause(self) -> None:
        if self._state is not PlaybackState.PLAYING:
            return
        with self._lock:
            job = self._job
            if job is not None:
                job.resumed.clear()
                _signal_process(job.process, "SIGSTOP")
        self._state = PlaybackState.PAUSED

    def resume(self) -> None:
        if self._state is not PlaybackState.PAUSED:
            return
        with self._lock:
            job = self._job
            if job is not None:
                _signal_process(job.process, "SIGCONT")
                job.resumed.set()
        self._state = PlaybackState.PLAYING

    def stop(self) -> None:
        with self._lock:
            job = self._job
            self._job = None
            if job is not None:
                job.cancelled.set()
                job.resumed.set()
                process = job.process
                if process is not None and process.poll() is None:
                    _signal_process(process, "SIGCONT")
                    process.terminate()
        self._state = PlaybackState.IDLE
        if job is not None:
            self._notify_finished(job.utterance)

    def close(self) -> None:
        self.stop()
        self.client.close()


def _signal_process(process: subprocess.Popen | None, name: str) -> None:
    sig = getattr(signal, name, None)
    if process is None or sig is None or process.poll() is not None:
        return
    try:
        process.send_signal(sig)
    except ProcessLookupError:
        pass
