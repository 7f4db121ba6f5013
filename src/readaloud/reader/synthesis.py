"""
Speech Synthesis.

The reader core talks to speech synthesis through the Synthesizer protocol:
one async call turns a chunk of text and a voice id into raw PCM audio.
HttpSpeechSynthesizer implements it against any endpoint that speaks the
OpenAI audio/speech dialect:

    POST {base_url}/v1/audio/speech
    Authorization: Bearer <api key>
    {"model": ..., "input": text, "voice": voice, "response_format": "pcm"}

The response body is raw 24 kHz 16-bit little-endian mono PCM. Servers
that ignore response_format and answer with a WAV file are accepted too.

Usage:
    synth = HttpSpeechSynthesizer.from_config(config.synthesis)
    pcm = await synthesize_text(synth, "Hello there.", "Kore")
    resource = pcm_to_resource(pcm, label="chunk-0")
    await synth.aclose()
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import httpx

from readaloud.core.config import Defaults, SynthesisConfig
from readaloud.core.errors import SynthesisError
from readaloud.core.logging import get_logger, debug, fail, verbose
from readaloud.reader.resource import AudioResource
from readaloud.utils.audio import is_wav, wav_bytes_to_pcm16
from readaloud.utils.timeit import timeit

_LOG = get_logger("readaloud.synthesis")

SPEECH_PATH = "/v1/audio/speech"


@dataclass
class PcmAudio:
    """
    Raw synthesized audio.

    Attributes:
        data: 16-bit little-endian mono samples.
        sample_rate: Samples per second.
    """
    data: bytes
    sample_rate: int

    @property
    def duration_s(self) -> float:
        return len(self.data) / 2 / self.sample_rate if self.sample_rate else 0.0


@runtime_checkable
class Synthesizer(Protocol):
    """Anything that can turn text into speech for a given voice."""

    async def synthesize(self, text: str, voice: str) -> PcmAudio:
        ...


class HttpSpeechSynthesizer:
    """
    Synthesizer backed by an OpenAI-compatible HTTP endpoint.

    A single httpx.AsyncClient is reused for every request so that
    prefetching neighbouring chunks shares one connection pool.
    """

    def __init__(
        self,
        base_url: str = Defaults.SYNTH_BASE_URL,
        model: str = Defaults.SYNTH_MODEL,
        api_key: str = "",
        require_api_key: bool = Defaults.SYNTH_REQUIRE_API_KEY,
        timeout_s: float = Defaults.SYNTH_TIMEOUT_S,
        sample_rate: int = Defaults.SYNTH_SAMPLE_RATE,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.require_api_key = require_api_key
        self.timeout_s = timeout_s
        self.sample_rate = sample_rate
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_config(cls, cfg: SynthesisConfig, client: Optional[httpx.AsyncClient] = None) -> "HttpSpeechSynthesizer":
        return cls(
            base_url=cfg.base_url,
            model=cfg.model,
            api_key=cfg.api_key,
            require_api_key=cfg.require_api_key,
            timeout_s=cfg.timeout_s,
            sample_rate=cfg.sample_rate,
            client=client,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def synthesize(self, text: str, voice: str) -> PcmAudio:
        """
        Request speech for text.

        Raises:
            SynthesisError: Missing credentials, HTTP or transport failure,
                or an empty/undecodable body.
        """
        if self.require_api_key and not self.api_key:
            raise SynthesisError(
                "No API key configured for speech synthesis.",
                details={"hint": "set READALOUD_API_KEY or synthesis.api_key"},
            )

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "model": self.model,
            "input": text,
            "voice": voice,
            "response_format": "pcm",
        }

        url = self.base_url + SPEECH_PATH
        try:
            with timeit("synth_request") as t:
                response = await self._get_client().post(
                    url, headers=headers, json=payload, timeout=self.timeout_s,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            fail(_LOG, "synth_http_error", status=status, voice=voice)
            raise SynthesisError(
                f"Speech service returned HTTP {status}.",
                details={"status": status, "voice": voice},
            ) from e
        except httpx.HTTPError as e:
            fail(_LOG, "synth_transport_error", error=str(e), voice=voice)
            raise SynthesisError(
                f"Could not reach the speech service: {e}",
                details={"url": url},
            ) from e

        body = response.content
        if not body:
            raise SynthesisError("Speech service returned no audio.", details={"voice": voice})

        if is_wav(body):
            try:
                data, sr = wav_bytes_to_pcm16(body)
            except Exception as e:
                raise SynthesisError(f"Could not decode WAV response: {e}") from e
            debug(_LOG, "synth_wav_decoded", sr=sr)
        else:
            data, sr = body, self.sample_rate

        if not data:
            raise SynthesisError("Speech service returned no audio.", details={"voice": voice})

        verbose(_LOG, "synthesized", voice=voice, chars=len(text), bytes=len(data), seconds=round(t.seconds, 3))
        return PcmAudio(data=data, sample_rate=sr)


async def synthesize_text(synthesizer: Synthesizer, text: str, voice: str) -> PcmAudio:
    """
    Synthesize text, refusing empty input without calling out.

    Raises:
        SynthesisError: Empty text, or whatever the synthesizer raises.
    """
    if not text or not text.strip():
        raise SynthesisError("Nothing to read: chunk text is empty.")
    audio = await synthesizer.synthesize(text, voice)
    if not audio.data:
        raise SynthesisError("Speech service returned no audio.", details={"voice": voice})
    return audio


def pcm_to_resource(audio: PcmAudio, label: str = "") -> AudioResource:
    """Wrap synthesized PCM in a playable resource."""
    try:
        return AudioResource.from_pcm16(audio.data, audio.sample_rate, label=label)
    except (OSError, RuntimeError, ValueError) as e:
        raise SynthesisError(f"Could not prepare audio for playback: {e}") from e
