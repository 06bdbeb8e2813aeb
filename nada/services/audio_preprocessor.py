"""
Audio Preprocessor
Format detection, decoding, resampling, high-pass filtering, amplitude
normalization and fixed-length chunking of field recordings before analysis.
"""
import io
import logging
from math import gcd

import numpy as np
import soundfile as sf
from scipy import signal

from nada.errors import AudioDecodeError

logger = logging.getLogger(__name__)

# libsndfile subtype -> bit depth
SUBTYPE_BIT_DEPTH = {
    'PCM_S8': 8,
    'PCM_U8': 8,
    'PCM_16': 16,
    'PCM_24': 24,
    'PCM_32': 32,
    'FLOAT': 32,
    'DOUBLE': 64,
}


class AudioPreprocessor:
    """Prepares uploaded recordings for frog call analysis"""

    TARGET_SAMPLE_RATE = 44100
    TARGET_CHUNK_DURATION = 30  # seconds
    MIN_CHUNK_DURATION = 10  # seconds
    HIGH_PASS_CUTOFF = 100  # Hz
    HIGH_PASS_ORDER = 4
    MIN_AMPLITUDE = 0.1
    MAX_AMPLITUDE = 0.9

    EXTENSION_FORMATS = {
        'wav': 'wav',
        'wave': 'wav',
        'mp3': 'mp3',
        'flac': 'flac',
        'ogg': 'ogg',
        'oga': 'ogg',
    }

    def preprocess(self, data, filename):
        """
        Run the full preprocessing pipeline

        Args:
            data: Raw uploaded bytes
            filename: Original file name (used for format detection)

        Returns:
            dict with samples (mono float32 at TARGET_SAMPLE_RATE), metadata,
            chunks, preprocessing_applied and quality_score

        Raises:
            AudioDecodeError: if the bytes cannot be decoded as audio
        """
        logger.info(f"Starting audio preprocessing for: {filename} ({len(data)} bytes)")

        audio_format = self.detect_format(data, filename)
        samples, sample_rate, channels, bit_depth = self._decode(data, filename, audio_format)

        metadata = {
            'format': audio_format,
            'sample_rate': sample_rate,
            'original_sample_rate': sample_rate,
            'channels': channels,
            'duration': round(len(samples) / float(sample_rate), 3) if sample_rate else 0.0,
            'bit_depth': bit_depth,
            'file_size': len(data),
        }
        logger.info(
            f"Audio format detected: {audio_format}, {sample_rate}Hz, {channels}ch, {metadata['duration']:.1f}s"
        )

        quality_score = self.assess_quality(metadata)
        applied = []

        if channels > 1:
            applied.append(f'Downmix: {channels} channels to mono')

        if audio_format in ('mp3', 'ogg'):
            applied.append(f'{audio_format.upper()} to PCM decoding')

        if sample_rate != self.TARGET_SAMPLE_RATE:
            samples = self.resample(samples, sample_rate, self.TARGET_SAMPLE_RATE)
            applied.append(f'Resampling: {sample_rate}Hz → {self.TARGET_SAMPLE_RATE}Hz')

        samples = self.apply_high_pass_filter(samples, self.TARGET_SAMPLE_RATE)
        applied.append(f'High-pass filter: {self.HIGH_PASS_CUTOFF}Hz cutoff')

        samples = self.normalize_amplitude(samples)
        applied.append('Amplitude normalization')

        chunks = self.chunk_audio(samples, self.TARGET_SAMPLE_RATE)
        applied.append(f'Audio chunking: {len(chunks)} × {self.TARGET_CHUNK_DURATION}s segments')

        metadata['sample_rate'] = self.TARGET_SAMPLE_RATE
        metadata['quality'] = self.get_quality_category(quality_score)

        logger.info(f"Preprocessing completed: {len(applied)} operations applied, quality {quality_score}/100")

        return {
            'samples': samples,
            'metadata': metadata,
            'chunks': chunks,
            'preprocessing_applied': applied,
            'quality_score': quality_score,
        }

    def detect_format(self, data, filename):
        """Detect the container format from the file extension, then the file signature"""
        extension = (filename or '').lower().rsplit('.', 1)[-1] if '.' in (filename or '') else ''
        if extension in self.EXTENSION_FORMATS:
            return self.EXTENSION_FORMATS[extension]

        header = bytes(data[:12])
        if len(header) >= 12 and header[0:4] == b'RIFF' and header[8:12] == b'WAVE':
            return 'wav'
        if header[0:3] == b'ID3' or (len(header) >= 2 and header[0] == 0xFF and (header[1] & 0xE0) == 0xE0):
            return 'mp3'
        if header[0:4] == b'fLaC':
            return 'flac'
        if header[0:4] == b'OggS':
            return 'ogg'

        logger.warning(f"Unknown audio format for file: {filename}")
        return 'unknown'

    def _decode(self, data, filename, audio_format):
        """Decode bytes into a mono float32 array"""
        if not data:
            raise AudioDecodeError(
                'Audio file is empty',
                warnings=['No audio data received'],
                recommendations=['Record again and make sure the file finished saving before uploading']
            )

        try:
            with sf.SoundFile(io.BytesIO(data)) as audio_file:
                sample_rate = audio_file.samplerate
                channels = audio_file.channels
                bit_depth = SUBTYPE_BIT_DEPTH.get(audio_file.subtype)
                frames = audio_file.read(dtype='float32', always_2d=True)
        except (RuntimeError, TypeError, ValueError) as e:
            logger.warning(f"Could not decode {filename} ({audio_format}): {e}")
            raise AudioDecodeError(
                'Audio could not be decoded',
                warnings=[f'Unreadable {audio_format} audio file'],
                recommendations=['Use .wav or high-quality .mp3 files']
            ) from e

        if frames.shape[0] == 0:
            raise AudioDecodeError(
                'Audio file contains no samples',
                warnings=['Recording has zero length'],
                recommendations=['Record for at least 30 seconds for better analysis']
            )

        samples = frames.mean(axis=1) if channels > 1 else frames[:, 0]
        return samples.astype(np.float32), sample_rate, channels, bit_depth

    def assess_quality(self, metadata):
        """Score recording quality 0-100 from its metadata"""
        score = 100

        sample_rate = metadata.get('original_sample_rate', metadata.get('sample_rate', 0))
        if sample_rate >= 44100:
            pass
        elif sample_rate >= 22050:
            score -= 10
        elif sample_rate >= 16000:
            score -= 25
        else:
            score -= 40

        # Prefer 30+ seconds for frog call analysis
        duration = metadata.get('duration', 0)
        if duration >= 30:
            pass
        elif duration >= 15:
            score -= 5
        elif duration >= 5:
            score -= 15
        else:
            score -= 30

        audio_format = metadata.get('format')
        if audio_format in ('wav', 'flac'):
            pass
        elif audio_format in ('mp3', 'ogg'):
            score -= 5
        else:
            score -= 20

        # Mono preferred
        channels = metadata.get('channels', 1)
        if channels == 1:
            score += 5
        elif channels != 2:
            score -= 10

        return max(0, min(100, score))

    @staticmethod
    def get_quality_category(score):
        """Convert quality score to category"""
        if score >= 90:
            return 'excellent'
        if score >= 75:
            return 'good'
        if score >= 60:
            return 'fair'
        return 'poor'

    @staticmethod
    def resample(samples, from_rate, to_rate):
        """Polyphase resampling between integer sample rates"""
        divisor = gcd(int(from_rate), int(to_rate))
        up = int(to_rate) // divisor
        down = int(from_rate) // divisor
        return signal.resample_poly(samples, up, down).astype(np.float32)

    def apply_high_pass_filter(self, samples, sample_rate):
        """Remove handling, wind and mains rumble below HIGH_PASS_CUTOFF"""
        sos = signal.butter(
            self.HIGH_PASS_ORDER, self.HIGH_PASS_CUTOFF,
            btype='highpass', fs=sample_rate, output='sos'
        )
        return signal.sosfilt(sos, samples).astype(np.float32)

    def normalize_amplitude(self, samples):
        """Scale so the peak sits at MAX_AMPLITUDE; near-silent input is left untouched"""
        peak = float(np.max(np.abs(samples))) if samples.size else 0.0
        if peak < 1e-6:
            logger.warning("Recording is effectively silent, skipping normalization")
            return samples
        return (samples * (self.MAX_AMPLITUDE / peak)).astype(np.float32)

    def chunk_audio(self, samples, sample_rate):
        """Split into TARGET_CHUNK_DURATION segments, dropping any shorter than MIN_CHUNK_DURATION"""
        chunk_size = int(self.TARGET_CHUNK_DURATION * sample_rate)
        min_size = int(self.MIN_CHUNK_DURATION * sample_rate)

        chunks = []
        for start in range(0, len(samples), chunk_size):
            chunk = samples[start:start + chunk_size]
            if len(chunk) >= min_size:
                chunks.append(chunk)

        logger.info(f"Created {len(chunks)} audio chunks for analysis")
        return chunks

    def validate_for_analysis(self, metadata):
        """
        Soft suitability gate for frog call analysis

        Args:
            metadata: metadata dict produced by preprocess()

        Returns:
            dict with suitable (bool), warnings and recommendations lists
        """
        warnings = []
        recommendations = []

        duration = metadata.get('duration', 0)
        if duration < 30:
            warnings.append(f'Recording is only {duration:.1f}s long')
            recommendations.append('Record for at least 30 seconds for better analysis')

        sample_rate = metadata.get('original_sample_rate', metadata.get('sample_rate', 0))
        if sample_rate < 22050:
            warnings.append(f'Low sample rate: {sample_rate}Hz')
            recommendations.append('Use higher quality recording settings (44.1kHz recommended)')

        if metadata.get('format') == 'unknown':
            warnings.append('Unknown audio format detected')
            recommendations.append('Use .wav or high-quality .mp3 files')

        if metadata.get('quality') == 'poor':
            warnings.append('Poor audio quality detected')
            recommendations.append('Record in a quieter environment closer to the water')

        suitable = len(warnings) == 0 or (len(warnings) <= 2 and metadata.get('quality') != 'poor')

        return {
            'suitable': suitable,
            'warnings': warnings,
            'recommendations': recommendations,
        }
