"""
Audio Controller - Field recording upload, quality check, denoising and analysis
"""
import time
from flask import Blueprint, request, jsonify, current_app

from nada.errors import InputQualityError, NadaError, PersistenceError
from nada.services.analysis_orchestrator import AnalysisOrchestrator
from nada.services.audio_preprocessor import AudioPreprocessor
from nada.services.denoiser import Denoiser

audio_bp = Blueprint('audio', __name__, url_prefix='/api/audio')


def _uploaded_audio():
    """Return (bytes, filename) for the multipart 'audio' field, or None"""
    audio_file = request.files.get('audio')
    if audio_file is None or not audio_file.filename:
        return None
    return audio_file.read(), audio_file.filename


def _float_field(name):
    value = request.form.get(name)
    if value in (None, ''):
        return None
    try:
        return float(value)
    except ValueError:
        raise InputQualityError(f'{name} must be a number')


def _elapsed_ms(start):
    return int((time.time() - start) * 1000)


@audio_bp.route('/analyze', methods=['POST'])
def analyze():
    """
    Full pipeline: preprocess, validate, optionally denoise, analyze, fuse and store

    Form fields:
        audio: the recording (wav, mp3, flac, ogg)
        latitude, longitude: optional recording location
        denoise: 'false' to skip denoising (default on)
        field_id, field_name: optional field tags
        user_id: optional submitting user
    """
    start = time.time()
    upload = _uploaded_audio()
    if upload is None:
        return jsonify({'success': False, 'error': 'No audio file provided'}), 400
    data, filename = upload

    latitude = _float_field('latitude')
    longitude = _float_field('longitude')
    apply_denoising = request.form.get('denoise') != 'false'
    location = {'latitude': latitude, 'longitude': longitude} \
        if latitude is not None and longitude is not None else None
    tags = {
        'field_id': request.form.get('field_id'),
        'field_name': request.form.get('field_name'),
    }

    current_app.logger.info(f"Received audio analysis request: {filename}, {len(data) / 1024 / 1024:.2f}MB")

    preprocessor = AudioPreprocessor()
    preprocessed = preprocessor.preprocess(data, filename)

    validation = preprocessor.validate_for_analysis(preprocessed['metadata'])
    if not validation['suitable']:
        current_app.logger.warning(f"Audio quality insufficient for analysis ({_elapsed_ms(start)}ms)")
        raise InputQualityError(
            'Audio quality insufficient for reliable frog call analysis',
            warnings=validation['warnings'],
            recommendations=validation['recommendations'],
            metadata=preprocessed['metadata']
        )

    samples = preprocessed['samples']
    sample_rate = preprocessed['metadata']['sample_rate']
    denoising = {'applied': False}
    if apply_denoising:
        result = Denoiser().denoise(samples, sample_rate, filename)
        samples = result['denoised_audio']
        denoising = {
            'applied': True,
            'noise_reduction_db': result['noise_reduction_db'],
            'noise_profile': result['noise_profile'],
            'quality_improvement': result['quality_improvement'],
        }
        current_app.logger.info(f"Noise reduced by {result['noise_reduction_db']:.1f}dB")
    else:
        current_app.logger.info("Skipping denoising as requested")

    preprocessing = {
        'applied_operations': preprocessed['preprocessing_applied'],
        'audio_quality': preprocessed['metadata']['quality'],
        'quality_score': preprocessed['quality_score'],
        'original_format': preprocessed['metadata']['format'],
        'chunk_count': len(preprocessed['chunks']),
    }

    orchestrator = AnalysisOrchestrator()
    persisted = True
    warnings = []
    try:
        assessment = orchestrator.process(
            samples, sample_rate, filename,
            location=location,
            audio_metadata=preprocessed['metadata'],
            tags=tags,
            user_id=request.form.get('user_id')
        )
    except PersistenceError as e:
        if e.assessment is None:
            raise
        assessment = e.assessment
        persisted = False
        warnings.append('Analysis could not be saved to history; results are shown but not stored')

    processing_time = _elapsed_ms(start)
    enhanced = dict(assessment, preprocessing=preprocessing, denoising=denoising, persisted=persisted)

    message = (
        f"Complete audio analysis with preprocessing, {'denoising, ' if apply_denoising else ''}"
        f"species call and soundscape analysis completed in {processing_time / 1000:.1f}s"
    )
    response = {
        'success': True,
        'analysis': enhanced,
        'processing_time_ms': processing_time,
        'message': message,
    }
    if warnings:
        response['warnings'] = warnings

    current_app.logger.info(f"Audio analysis completed in {processing_time}ms")
    return jsonify(response)


@audio_bp.route('/analyze-quality', methods=['POST'])
def analyze_quality():
    """Preprocess only and report quality and suitability"""
    upload = _uploaded_audio()
    if upload is None:
        return jsonify({'success': False, 'error': 'No audio file provided'}), 400
    data, filename = upload

    try:
        preprocessor = AudioPreprocessor()
        preprocessed = preprocessor.preprocess(data, filename)
        validation = preprocessor.validate_for_analysis(preprocessed['metadata'])
    except InputQualityError:
        raise
    except Exception as e:
        current_app.logger.error(f"Audio quality analysis error: {str(e)}")
        return jsonify({'success': False, 'error': 'Audio quality analysis failed', 'details': str(e)}), 500

    return jsonify({
        'success': True,
        'metadata': preprocessed['metadata'],
        'quality_score': preprocessed['quality_score'],
        'validation': validation,
        'preprocessing_required': preprocessed['preprocessing_applied'],
        'message': 'Audio quality is suitable for frog call analysis' if validation['suitable']
        else 'Audio quality needs improvement for optimal analysis'
    })


@audio_bp.route('/denoise', methods=['POST'])
def denoise():
    """Denoise only and report the noise profile and metrics"""
    upload = _uploaded_audio()
    if upload is None:
        return jsonify({'success': False, 'error': 'No audio file provided'}), 400
    data, filename = upload

    try:
        preprocessed = AudioPreprocessor().preprocess(data, filename)
        result = Denoiser().denoise(
            preprocessed['samples'], preprocessed['metadata']['sample_rate'], filename
        )
    except NadaError:
        raise
    except Exception as e:
        current_app.logger.error(f"Audio denoising error: {str(e)}")
        return jsonify({'success': False, 'error': 'Audio denoising failed', 'details': str(e)}), 500

    return jsonify({
        'success': True,
        'denoising_result': {
            'noise_reduction_db': result['noise_reduction_db'],
            'noise_profile': result['noise_profile'],
            'processing_time_ms': result['processing_time_ms'],
            'quality_improvement': result['quality_improvement'],
            'recommendation': result['recommendation'],
        },
        'message': f"Audio denoised successfully. Noise reduced by {result['noise_reduction_db']:.1f} dB"
    })
