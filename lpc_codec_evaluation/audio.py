import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

import numpy as np
from scipy.io import wavfile

from .constants import INT16_MIN, INT16_MAX, WAV_EXTENSION, RECONSTRUCTED_SUFFIX
from .types import AudioSource, AudioSink

logger = logging.getLogger(__name__)


@dataclass
class AudioSignal:
    """One channel of one file, as float64 samples in 16-bit PCM units."""
    samples: np.ndarray
    sample_rate: int
    identifier: str


def to_pcm16_units(data: np.ndarray) -> np.ndarray:
    """Convert whatever wavfile.read returned to float64 on the int16 scale."""
    if data.dtype.kind == "f":
        return data.astype(float) * 2 ** 15
    if data.dtype == np.uint8:
        return (data.astype(float) - 128.0) * 2 ** 8
    if data.dtype == np.int16:
        return data.astype(float)
    if data.dtype == np.int32:
        return data.astype(float) / 2 ** 16
    raise ValueError(f"Unsupported WAV sample type: {data.dtype}")


def read_wav(path) -> List[AudioSignal]:
    """
    Read a WAV file and split it into channels.
    Mono files keep the path as identifier, channel k of a multi-channel file is "<path>:ch<k>".
    """
    sample_rate, data = wavfile.read(str(path))
    samples = to_pcm16_units(data)
    if samples.ndim == 1:
        return [AudioSignal(samples, int(sample_rate), str(path))]
    return [AudioSignal(samples[:, channel].copy(), int(sample_rate), f"{path}:ch{channel}")
            for channel in range(samples.shape[1])]


class WavDirectorySource(AudioSource):
    """
    Yields every channel of every WAV file in a directory, files in sorted order.
    Files written by WavSink (the reconstructed suffix) are skipped.
    """

    def __init__(self, directory):
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise NotADirectoryError(f"Not a directory: {self.directory}")
        self._iterator = None

    def paths(self) -> List[Path]:
        return sorted(
            path for path in self.directory.iterdir()
            if path.is_file() and path.suffix.lower() == WAV_EXTENSION
            and not path.stem.endswith(RECONSTRUCTED_SUFFIX)
        )

    def __iter__(self) -> Iterator[AudioSignal]:
        for path in self.paths():
            logger.info("Processing file: %s", path)
            yield from read_wav(path)

    def next_signal(self) -> Optional[AudioSignal]:
        if self._iterator is None:
            self._iterator = iter(self)
        return next(self._iterator, None)


class WavSink(AudioSink):
    """
    Writes reconstructions as 16-bit PCM, "<stem>_reconstructed.wav" next to the
    source file or into `output_dir`. Channel k of a multi-channel source becomes
    "<stem>_ch<k>_reconstructed.wav".
    """

    def __init__(self, output_dir=None):
        self.output_dir = Path(output_dir) if output_dir is not None else None

    def output_path(self, identifier: str, suffix: str = RECONSTRUCTED_SUFFIX + WAV_EXTENSION) -> Path:
        source, _, channel = identifier.rpartition(":ch")
        if not source or not channel.isdigit():
            source, channel = identifier, ""
        source = Path(source)
        stem = source.stem + (f"_ch{channel}" if channel else "")
        directory = self.output_dir if self.output_dir is not None else source.parent
        return directory / f"{stem}{suffix}"

    def write(self, samples: np.ndarray, sample_rate: int, identifier: str) -> Path:
        path = self.output_path(identifier)
        path.parent.mkdir(parents=True, exist_ok=True)
        pcm = np.clip(np.round(np.asarray(samples, dtype=float)), INT16_MIN, INT16_MAX).astype(np.int16)
        wavfile.write(str(path), int(sample_rate), pcm)
        logger.debug("Wrote %s", path)
        return path
