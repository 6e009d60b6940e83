"""
HLS transcoding service for EduStream Backend
Turns an original upload into a multi-rendition HLS ladder with ffmpeg
"""

import json
import logging
import os
import shutil
import subprocess
import tempfile

from django.conf import settings

from core.exceptions import (
    EduStreamBaseException,
    InvalidContainer,
    TranscoderFailed,
    TranscoderMissing,
)
from core.utils import get_file_extension
from services.object_store import get_object_store

logger = logging.getLogger(__name__)

LADDER = [
    {'name': '480p', 'width': 854, 'height': 480,
     'video_bitrate': '800k', 'maxrate': '800k', 'bufsize': '1600k', 'audio_bitrate': '96k'},
    {'name': '720p', 'width': 1280, 'height': 720,
     'video_bitrate': '2000k', 'maxrate': '2000k', 'bufsize': '4000k', 'audio_bitrate': '128k'},
    {'name': '1080p', 'width': 1920, 'height': 1080,
     'video_bitrate': '4000k', 'maxrate': '4000k', 'bufsize': '8000k', 'audio_bitrate': '192k'},
]

HLS_SEGMENT_SECONDS = 4
MIN_FILE_BYTES = 1000
MIN_DURATION_SECONDS = 0.1
PROBE_TIMEOUT = 60
ENCODE_TIMEOUT = 6 * 3600

# Containers written by browser recorders, which often lack duration metadata
BROWSER_CONTAINERS = ('webm',)

CONTENT_TYPES = {
    '.m3u8': 'application/vnd.apple.mpegurl',
    '.ts': 'video/MP2T',
}


def _ffmpeg_binary():
    return getattr(settings, 'FFMPEG_BINARY', 'ffmpeg')


def _ffprobe_binary():
    return getattr(settings, 'FFPROBE_BINARY', 'ffprobe')


def _run(cmd, timeout):
    return subprocess.run(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        timeout=timeout,
        check=False,
    )


def _tail(text, limit=2000):
    text = text or ''
    return text[-limit:]


def is_available():
    """Whether the ffmpeg encoder can be executed"""
    return shutil.which(_ffmpeg_binary()) is not None


def probe(path):
    """
    Inspect a media file with ffprobe.

    Returns None when ffprobe cannot read the file.
    """
    cmd = [
        _ffprobe_binary(),
        '-v', 'error',
        '-print_format', 'json',
        '-show_format',
        '-show_streams',
        path,
    ]
    try:
        result = _run(cmd, timeout=PROBE_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning(f"ffprobe timed out on {path}")
        return None

    if result.returncode != 0:
        return None

    try:
        data = json.loads(result.stdout or '{}')
    except ValueError:
        return None

    streams = data.get('streams') or []
    video = next((s for s in streams if s.get('codec_type') == 'video'), None)
    duration = (data.get('format') or {}).get('duration')
    if duration is None and video:
        duration = video.get('duration')

    try:
        duration = float(duration) if duration is not None else None
    except (TypeError, ValueError):
        duration = None

    return {
        'duration': duration,
        'streams': streams,
        'has_video': video is not None,
        'has_audio': any(s.get('codec_type') == 'audio' for s in streams),
        'video_codec': video.get('codec_name') if video else None,
        'width': int(video.get('width') or 0) if video else 0,
        'height': int(video.get('height') or 0) if video else 0,
        'format_name': (data.get('format') or {}).get('format_name'),
    }


def validate(path, container):
    """
    Validate a downloaded original before encoding.

    Returns the probe result, or None when validation was skipped.
    """
    if shutil.which(_ffprobe_binary()) is None:
        logger.warning("ffprobe not available, skipping media validation")
        return None

    info = probe(path)
    if info is None:
        if container in BROWSER_CONTAINERS:
            logger.warning(f"ffprobe could not read {container} file {path}, skipping validation")
            return None
        raise InvalidContainer(f"Unreadable {container or 'video'} file")

    if os.path.getsize(path) < MIN_FILE_BYTES:
        raise InvalidContainer("Video file is too small to be valid")
    if not info['streams']:
        raise InvalidContainer("Video file contains no streams")
    if not info['has_video']:
        raise InvalidContainer("Video file contains no video stream")

    duration = info['duration']
    if duration is None:
        if container not in BROWSER_CONTAINERS:
            raise InvalidContainer("Video file has no duration")
    elif duration < MIN_DURATION_SECONDS:
        raise InvalidContainer(f"Video duration {duration}s is too short")

    return info


def select_renditions(source_height):
    """Ladder entries no taller than the source; the lowest one is always kept"""
    if not source_height:
        return list(LADDER)
    selected = [r for r in LADDER if r['height'] <= source_height]
    return selected or [LADDER[0]]


def _kbps(value):
    return int(str(value).rstrip('k'))


def bandwidth(rendition):
    """Peak bandwidth of a rendition in bits per second"""
    return (_kbps(rendition['video_bitrate']) + _kbps(rendition['audio_bitrate'])) * 1000


def build_rendition_command(input_path, output_dir, rendition):
    name = rendition['name']
    return [
        _ffmpeg_binary(),
        '-y',
        '-i', input_path,
        '-vf', f"scale={rendition['width']}:{rendition['height']}",
        '-c:v', 'libx264',
        '-profile:v', 'main',
        '-pix_fmt', 'yuv420p',
        '-b:v', rendition['video_bitrate'],
        '-maxrate', rendition['maxrate'],
        '-bufsize', rendition['bufsize'],
        '-g', '48',
        '-keyint_min', '48',
        '-sc_threshold', '0',
        '-c:a', 'aac',
        '-ac', '2',
        '-b:a', rendition['audio_bitrate'],
        '-f', 'hls',
        '-hls_time', str(HLS_SEGMENT_SECONDS),
        '-hls_playlist_type', 'vod',
        '-hls_segment_filename', os.path.join(output_dir, f"{name}_%03d.ts"),
        os.path.join(output_dir, f"{name}.m3u8"),
    ]


def build_master_playlist(renditions):
    lines = ['#EXTM3U', '#EXT-X-VERSION:3']
    for rendition in renditions:
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={bandwidth(rendition)},"
            f"RESOLUTION={rendition['width']}x{rendition['height']}"
        )
        lines.append(f"{rendition['name']}.m3u8")
    return '\n'.join(lines) + '\n'


def hls_prefix_for(object_key):
    """``hls/<base>/`` directory derived from an original's key"""
    base = os.path.splitext(os.path.basename(object_key))[0]
    return f"hls/{base}/"


def _encode(input_path, output_dir, rendition):
    cmd = build_rendition_command(input_path, output_dir, rendition)
    try:
        result = _run(cmd, timeout=ENCODE_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        raise TranscoderFailed(f"ffmpeg timed out encoding {rendition['name']}") from e
    except OSError as e:
        raise TranscoderMissing(f"ffmpeg could not be started: {str(e)}") from e

    if result.returncode != 0:
        raise TranscoderFailed(
            f"ffmpeg exited with code {result.returncode} encoding {rendition['name']}",
            details={'rendition': rendition['name'], 'stderr': _tail(result.stderr)},
        )


def transcode(object_key, progress_callback=None, store=None):
    """
    Download an original, encode the ladder and upload it under ``hls/<base>/``.

    Returns ``{master_url, master_key, renditions, duration}``.
    """
    if not is_available():
        raise TranscoderMissing("FFmpeg is not available")

    store = store or get_object_store()
    prefix = hls_prefix_for(object_key)
    work_dir = tempfile.mkdtemp(prefix='edustream-hls-')
    output_dir = os.path.join(work_dir, 'hls')
    os.makedirs(output_dir)
    uploaded = False

    try:
        source_path = store.download_to_temp(object_key, directory=work_dir)
        info = validate(source_path, get_file_extension(object_key))
        renditions = select_renditions(info['height'] if info else None)
        logger.info(f"Transcoding {object_key} into {[r['name'] for r in renditions]}")

        for index, rendition in enumerate(renditions, start=1):
            _encode(source_path, output_dir, rendition)
            if progress_callback:
                percent = 30 + int(30 * index / len(renditions))
                progress_callback(percent, f"Encoded {rendition['name']} rendition")

        with open(os.path.join(output_dir, 'master.m3u8'), 'w') as fh:
            fh.write(build_master_playlist(renditions))

        for file_name in sorted(os.listdir(output_dir)):
            content_type = CONTENT_TYPES.get(os.path.splitext(file_name)[1], 'application/octet-stream')
            uploaded = True
            store.put_file(prefix + file_name, os.path.join(output_dir, file_name), content_type)

        master_key = prefix + 'master.m3u8'
        logger.info(f"HLS output for {object_key} stored at {master_key}")
        return {
            'master_url': store.public_url(master_key),
            'master_key': master_key,
            'renditions': [r['name'] for r in renditions],
            'duration': info['duration'] if info else None,
        }

    except EduStreamBaseException:
        if uploaded:
            try:
                store.delete_prefix(prefix)
            except EduStreamBaseException as cleanup_error:
                logger.warning(f"Could not remove partial HLS output {prefix}: {str(cleanup_error)}")
        raise

    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
