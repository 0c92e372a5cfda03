"""PCM decoding, filtering, buffering and MP3 encoding."""

__all__ = [
    "MP3_FRAME_SAMPLES",
    "AudioAccumulator",
    "FilterResult",
    "LowPassFilter",
    "Mp3Encoder",
    "decode_pcm16",
    "encode_chunks_to_mp3",
    "encode_pcm16",
]

from .accumulator import AudioAccumulator
from .encoder import MP3_FRAME_SAMPLES, Mp3Encoder, encode_chunks_to_mp3
from .filter import FilterResult, LowPassFilter
from .pcm import decode_pcm16, encode_pcm16
