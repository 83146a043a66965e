"""
Per-frame feature extraction.

Extracts the perceptual drivers of each analysis frame: MFCC timbre,
chroma pitch-class energy, YIN fundamental frequency, spectral shape
descriptors, loudness and three-band energy.

Frames are produced in strictly increasing time order; downstream
smoothing and segmentation rely on it.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import librosa
import numpy as np
from scipy import signal as scipy_signal

from audiomanifold.config import AnalysisConfig
from audiomanifold.core.buffer import SampleBuffer
from audiomanifold.core.spectral import SpectralCache, SpectralEngine
from audiomanifold.errors import AnalysisAborted, InputError

logger = logging.getLogger(__name__)

# Band edges in Hz: low, mid, high
BAND_EDGES = ((20.0, 250.0), (250.0, 2000.0), (2000.0, 8000.0))
BAND_NAMES = ("low", "mid", "high")

CHROMA_MIN_HZ = 30.0
CHROMA_MAX_HZ = 5000.0
CHROMA_REF_HZ = 440.0

PITCH_MIN_HZ = 50.0
PITCH_MAX_HZ = 2000.0
MIN_PITCH_CONFIDENCE = 0.3

LOG_FLOOR = 1e-10


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FrameFeatures:
    """Feature record of a single analysis frame."""

    time: float
    mfcc: np.ndarray           # (n_mfcc,)
    chroma: np.ndarray         # (12,) L1-normalized or all zero
    f0: Optional[float]        # Hz, None when unvoiced
    f0_confidence: float       # [0,1]
    loudness: float            # RMS of the raw frame
    centroid: float            # Hz
    bandwidth: float           # Hz
    flatness: float            # (0,1]
    flux: float                # >= 0
    band_energy: np.ndarray    # (3,) low / mid / high magnitude sums


@dataclass
class ExtractedFeatures:
    """Column-oriented features for a whole track."""

    times: np.ndarray          # (n,)
    mfcc: np.ndarray           # (n, n_mfcc)
    chroma: np.ndarray         # (n, 12)
    f0: np.ndarray             # (n,) NaN where unvoiced
    f0_confidence: np.ndarray  # (n,)
    loudness: np.ndarray
    centroid: np.ndarray
    bandwidth: np.ndarray
    flatness: np.ndarray
    flux: np.ndarray
    band_energy: np.ndarray    # (n, 3)
    frame_size: int
    hop_size: int
    sample_rate: int
    duration: float

    @property
    def n_frames(self) -> int:
        return len(self.times)

    def frame(self, index: int) -> FrameFeatures:
        """Row view of frame *index* as a :class:`FrameFeatures`."""
        f0 = self.f0[index]
        return FrameFeatures(
            time=float(self.times[index]),
            mfcc=self.mfcc[index],
            chroma=self.chroma[index],
            f0=None if np.isnan(f0) else float(f0),
            f0_confidence=float(self.f0_confidence[index]),
            loudness=float(self.loudness[index]),
            centroid=float(self.centroid[index]),
            bandwidth=float(self.bandwidth[index]),
            flatness=float(self.flatness[index]),
            flux=float(self.flux[index]),
            band_energy=self.band_energy[index],
        )


# ---------------------------------------------------------------------------
# Mel filterbank + DCT
# ---------------------------------------------------------------------------

class MelFilterbank:
    """
    Triangular mel filterbank and DCT-II cosine table.

    Both tables are built once and are read-only afterwards.
    """

    def __init__(
        self,
        n_mels: int,
        n_mfcc: int,
        frame_size: int,
        sample_rate: int,
        low_hz: float = 20.0,
    ):
        self.n_mels = n_mels
        self.n_mfcc = n_mfcc
        self.frame_size = frame_size
        self.sample_rate = sample_rate
        self.low_hz = low_hz

        self.filters = self._build_filters()
        self.dct_table = self._build_dct_table()
        self.filters.setflags(write=False)
        self.dct_table.setflags(write=False)

    @property
    def key(self) -> tuple:
        return (self.n_mels, self.n_mfcc, self.frame_size, self.sample_rate, self.low_hz)

    def _build_filters(self) -> np.ndarray:
        n_bins = self.frame_size // 2 + 1
        nyquist = self.sample_rate / 2.0

        mel_low = librosa.hz_to_mel(self.low_hz, htk=True)
        mel_high = librosa.hz_to_mel(nyquist, htk=True)
        mel_points = mel_low + (mel_high - mel_low) * np.arange(self.n_mels + 2) / (
            self.n_mels + 1
        )
        bin_points = np.floor(
            librosa.mel_to_hz(mel_points, htk=True) / nyquist * (n_bins - 1)
        )

        k = np.arange(n_bins, dtype=np.float64)
        filters = np.zeros((self.n_mels, n_bins))
        for m in range(self.n_mels):
            left, center, right = bin_points[m], bin_points[m + 1], bin_points[m + 2]
            if center > left:
                rising = (k >= left) & (k <= center)
                filters[m, rising] = (k[rising] - left) / (center - left)
            if right > center:
                falling = (k > center) & (k <= right)
                filters[m, falling] = (right - k[falling]) / (right - center)
        return filters

    def _build_dct_table(self) -> np.ndarray:
        k = np.arange(self.n_mfcc)[:, None]
        n = np.arange(self.n_mels)[None, :]
        return np.cos(np.pi * k * (n + 0.5) / self.n_mels)

    def mfcc(self, magnitude: np.ndarray) -> np.ndarray:
        """Log mel energies of the power spectrum followed by a DCT-II."""
        energies = self.filters @ (magnitude * magnitude)
        log_energies = np.log(np.maximum(energies, LOG_FLOOR))
        return self.dct_table @ log_energies


# ---------------------------------------------------------------------------
# Feature analyzer
# ---------------------------------------------------------------------------

class FeatureAnalyzer:
    """
    Extracts per-frame features from a sample buffer.

    Holds its own spectral cache and mel filterbank, so one instance must
    not be shared between concurrent runs with different parameters.
    """

    CHROMA_NAMES = ["A", "A#", "B", "C", "C#", "D", "D#", "E", "F", "F#", "G", "G#"]

    def __init__(self, config: Optional[AnalysisConfig] = None):
        """
        Initialize the analyzer.

        Args:
            config: Analysis parameters (defaults apply when None).
        """
        self.config = config or AnalysisConfig()
        self.engine = SpectralEngine(self.config.frame_size, SpectralCache())
        self._filterbank: Optional[MelFilterbank] = None
        self._bin_tables: Optional[tuple] = None

    # ------------------------------------------------------------------
    # Lazily built tables
    # ------------------------------------------------------------------

    def filterbank(self, sample_rate: int) -> MelFilterbank:
        """Mel filterbank for *sample_rate*, rebuilt when parameters change."""
        cfg = self.config
        key = (cfg.n_mels, cfg.n_mfcc, cfg.frame_size, sample_rate, cfg.mel_low_hz)
        if self._filterbank is None or self._filterbank.key != key:
            self._filterbank = MelFilterbank(
                n_mels=cfg.n_mels,
                n_mfcc=cfg.n_mfcc,
                frame_size=cfg.frame_size,
                sample_rate=sample_rate,
                low_hz=cfg.mel_low_hz,
            )
        return self._filterbank

    def _bins(self, sample_rate: int) -> tuple:
        """Bin frequencies, chroma class map and band masks for *sample_rate*."""
        n = self.config.frame_size
        if self._bin_tables is not None and self._bin_tables[0] == (n, sample_rate):
            return self._bin_tables[1]

        freqs = np.arange(n // 2 + 1) * sample_rate / n

        chroma_bins = np.nonzero(
            (np.arange(len(freqs)) >= 1)
            & (freqs >= CHROMA_MIN_HZ)
            & (freqs <= CHROMA_MAX_HZ)
        )[0]
        semitones = 12.0 * np.log2(freqs[chroma_bins] / CHROMA_REF_HZ)
        pitch_classes = np.mod(np.floor(semitones + 0.5).astype(np.int64), 12)

        band_masks = np.array(
            [(freqs >= lo) & (freqs < hi) for lo, hi in BAND_EDGES]
        )

        tables = (freqs, chroma_bins, pitch_classes, band_masks)
        self._bin_tables = ((n, sample_rate), tables)
        return tables

    # ------------------------------------------------------------------
    # Individual extractors
    # ------------------------------------------------------------------

    def compute_chroma(self, magnitude: np.ndarray, sample_rate: int) -> np.ndarray:
        """
        Pitch-class energy profile, L1-normalized.

        Returns the zero vector when no in-range bin carries energy.
        """
        _, chroma_bins, pitch_classes, _ = self._bins(sample_rate)
        energy = magnitude[chroma_bins] ** 2
        chroma = np.bincount(pitch_classes, weights=energy, minlength=12)
        total = chroma.sum()
        if total > 0:
            chroma = chroma / total
        return chroma

    def detect_pitch(
        self,
        frame: np.ndarray,
        sample_rate: int,
    ) -> tuple[Optional[float], float]:
        """
        YIN fundamental frequency estimate for one raw frame.

        Args:
            frame: Unwindowed samples; fewer than ``frame_size`` means unvoiced.
            sample_rate: Sample rate in Hz.

        Returns:
            Tuple of (f0 in Hz or None, confidence in [0,1]).
        """
        n = self.config.frame_size
        if len(frame) < n:
            return None, 0.0

        half = n // 2
        x = np.asarray(frame[:n], dtype=np.float64)

        # d(tau) = E(0) + E(tau) - 2 r(tau) over a half-window
        acf = scipy_signal.correlate(x[: 2 * half - 1], x[:half], mode="valid")
        squares = np.concatenate([[0.0], np.cumsum(x * x)])
        energy_lag = squares[half : 2 * half] - squares[:half]
        diff = np.maximum(squares[half] + energy_lag - 2.0 * acf, 0.0)

        cmndf = np.ones(half)
        running = np.cumsum(diff[1:])
        taus = np.arange(1, half)
        nonzero = running > 0
        cmndf[1:][nonzero] = diff[1:][nonzero] * taus[nonzero] / running[nonzero]

        lo = max(2, int(sample_rate // PITCH_MAX_HZ))
        hi = min(half, int(sample_rate // PITCH_MIN_HZ))
        if lo >= hi:
            return None, 0.0

        best_tau = -1
        best_val = 1.0
        below = np.nonzero(cmndf[lo:hi] < self.config.yin_threshold)[0]
        if len(below) > 0:
            tau = lo + int(below[0])
            while tau + 1 < half and cmndf[tau + 1] < cmndf[tau]:
                tau += 1
            best_tau = tau
            best_val = float(cmndf[tau])
        else:
            candidate = lo + int(np.argmin(cmndf[lo:hi]))
            if cmndf[candidate] < best_val:
                best_tau = candidate
                best_val = float(cmndf[candidate])

        if best_tau < 2:
            return None, 0.0

        refined = float(best_tau)
        if best_tau < half - 1:
            a, b, c = cmndf[best_tau - 1], cmndf[best_tau], cmndf[best_tau + 1]
            denom = 2.0 * (a - 2.0 * b + c)
            if denom != 0:
                shift = (a - c) / denom
                if abs(shift) < 1:
                    refined += shift

        f0 = sample_rate / refined
        confidence = 1.0 - best_val
        if f0 < PITCH_MIN_HZ or f0 > PITCH_MAX_HZ or confidence < MIN_PITCH_CONFIDENCE:
            return None, 0.0
        return float(f0), float(np.clip(confidence, 0.0, 1.0))

    def spectral_shape(
        self,
        magnitude: np.ndarray,
        sample_rate: int,
    ) -> tuple[float, float, float]:
        """Centroid (Hz), bandwidth (Hz) and flatness over bins 1..N/2."""
        freqs = self._bins(sample_rate)[0][1:]
        mag = magnitude[1:]
        total = mag.sum()

        if total > 0:
            centroid = float((freqs * mag).sum() / total)
            bandwidth = float(np.sqrt((mag * (freqs - centroid) ** 2).sum() / total))
        else:
            centroid = 0.0
            bandwidth = 0.0

        if len(mag) == 0:
            return centroid, bandwidth, 0.0
        floored = np.maximum(mag, LOG_FLOOR)
        geometric = np.exp(np.mean(np.log(floored)))
        flatness = float(geometric / np.mean(floored))
        return centroid, bandwidth, flatness

    @staticmethod
    def spectral_flux(current: np.ndarray, previous: Optional[np.ndarray]) -> float:
        """Half-wave rectified L2 spectral difference; 0 without a previous frame."""
        if previous is None:
            return 0.0
        rise = np.maximum(current - previous, 0.0)
        return float(np.sqrt(np.sum(rise * rise)))

    @staticmethod
    def rms(frame: np.ndarray) -> float:
        if len(frame) == 0:
            return 0.0
        return float(np.sqrt(np.mean(frame * frame)))

    def band_energy(self, magnitude: np.ndarray, sample_rate: int) -> np.ndarray:
        """Summed magnitude in the low / mid / high bands."""
        band_masks = self._bins(sample_rate)[3]
        return band_masks @ magnitude

    # ------------------------------------------------------------------
    # Main analysis entry point
    # ------------------------------------------------------------------

    def count_frames(self, n_samples: int) -> int:
        """``floor((n_samples - frame_size) / hop_size)``, never negative."""
        cfg = self.config
        return max(0, (n_samples - cfg.frame_size) // cfg.hop_size)

    def analyze(
        self,
        buffer: SampleBuffer,
        progress_callback: Optional[Callable[[float], None]] = None,
        cancel_event=None,
    ) -> ExtractedFeatures:
        """
        Extract features for every frame of *buffer*.

        Args:
            buffer: Validated mono sample buffer.
            progress_callback: Called with the completed fraction every
                ``yield_every`` frames and once at the end.
            cancel_event: Object with ``is_set()``; checked between frames.

        Returns:
            ExtractedFeatures in frame order.

        Raises:
            InputError: If the buffer cannot yield a single frame.
            AnalysisAborted: If *cancel_event* is set during the run.
        """
        cfg = self.config
        sr = buffer.sample_rate
        samples = buffer.samples
        n_frames = self.count_frames(buffer.n_samples)
        if n_frames == 0:
            raise InputError(
                f"Buffer of {buffer.n_samples} samples is too short for "
                f"frame_size={cfg.frame_size}, hop_size={cfg.hop_size}"
            )

        filterbank = self.filterbank(sr)
        logger.debug(
            "Analyzing %d frames (frame=%d hop=%d sr=%d)",
            n_frames, cfg.frame_size, cfg.hop_size, sr,
        )

        times = np.arange(n_frames) * cfg.hop_size / sr
        mfcc = np.zeros((n_frames, cfg.n_mfcc))
        chroma = np.zeros((n_frames, 12))
        f0 = np.full(n_frames, np.nan)
        f0_conf = np.zeros(n_frames)
        loudness = np.zeros(n_frames)
        centroid = np.zeros(n_frames)
        bandwidth = np.zeros(n_frames)
        flatness = np.zeros(n_frames)
        flux = np.zeros(n_frames)
        bands = np.zeros((n_frames, len(BAND_EDGES)))

        previous = None
        for i in range(n_frames):
            if cancel_event is not None and cancel_event.is_set():
                raise AnalysisAborted(f"Analysis cancelled at frame {i}/{n_frames}")

            start = i * cfg.hop_size
            raw = samples[start : start + cfg.frame_size]
            magnitude = self.engine.magnitude(samples, start)

            mfcc[i] = filterbank.mfcc(magnitude)
            chroma[i] = self.compute_chroma(magnitude, sr)

            pitch, confidence = self.detect_pitch(raw, sr)
            if pitch is not None:
                f0[i] = pitch
            f0_conf[i] = confidence

            loudness[i] = self.rms(raw)
            centroid[i], bandwidth[i], flatness[i] = self.spectral_shape(magnitude, sr)
            flux[i] = self.spectral_flux(magnitude, previous)
            bands[i] = self.band_energy(magnitude, sr)

            previous = magnitude

            if progress_callback is not None and i % cfg.yield_every == 0:
                progress_callback(i / n_frames)

        if progress_callback is not None:
            progress_callback(1.0)

        logger.debug(
            "Dominant pitch class: %s", self.dominant_pitch_class(chroma) or "none"
        )

        return ExtractedFeatures(
            times=times,
            mfcc=mfcc,
            chroma=chroma,
            f0=f0,
            f0_confidence=f0_conf,
            loudness=loudness,
            centroid=centroid,
            bandwidth=bandwidth,
            flatness=flatness,
            flux=flux,
            band_energy=bands,
            frame_size=cfg.frame_size,
            hop_size=cfg.hop_size,
            sample_rate=sr,
            duration=buffer.duration,
        )

    @classmethod
    def chroma_index_to_name(cls, index: int) -> str:
        """Convert chroma index (0-11, 0 = A) to note name."""
        return cls.CHROMA_NAMES[index % 12]

    @classmethod
    def dominant_pitch_class(cls, chroma: np.ndarray) -> Optional[str]:
        """Note name of the strongest pitch class summed over frames, or None."""
        profile = np.asarray(chroma, dtype=np.float64).reshape(-1, 12).sum(axis=0)
        if profile.max() <= 0:
            return None
        return cls.chroma_index_to_name(int(np.argmax(profile)))
