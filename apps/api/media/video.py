import logging
import os

import ffmpeg

logger = logging.getLogger(__name__)

RESOLUTIONS = {
    "480p": (854, 480, "1000k"),
    "720p": (1280, 720, "2500k"),
}


class VideoBackendUnavailable(RuntimeError):
    """ffmpeg/ffprobe binaries are not installed on this host."""


def _stderr_tail(error: ffmpeg.Error, limit: int = 400) -> str:
    stderr = error.stderr.decode("utf-8", "ignore") if error.stderr else str(error)
    return stderr.strip()[-limit:]


def get_video_metadata(video_path: str) -> dict:
    """
    Probe a video with ffprobe.
    Raises VideoBackendUnavailable when ffprobe itself cannot be executed.
    """
    try:
        return ffmpeg.probe(video_path)
    except FileNotFoundError as e:
        raise VideoBackendUnavailable(f"Cannot find ffprobe: {e}") from e
    except ffmpeg.Error as e:
        raise ValueError(f"Corrupt or unsupported video file {os.path.basename(video_path)}: {_stderr_tail(e)}") from e


def get_video_duration_seconds(metadata: dict) -> float:
    """
    Duration from probe metadata, falling back to the first video stream.
    """
    fmt = metadata.get("format", {})
    duration = float(fmt.get("duration", 0.0) or 0.0)
    if duration <= 0:
        for stream in metadata.get("streams", []):
            if stream.get("codec_type") == "video":
                duration = float(stream.get("duration", 0.0) or 0.0)
                if duration > 0:
                    break
    return max(duration, 0.0)


def generate_thumbnail(video_path: str, metadata: dict | None = None, width: int = 640) -> str:
    """
    Grab one frame at 10% of the video's duration.
    Returns the path of the JPEG written next to the source.
    """
    stem, _ = os.path.splitext(video_path)
    thumbnail_path = f"{stem}_thumbnail.jpg"
    duration = get_video_duration_seconds(metadata) if metadata else 0.0
    timestamp = round(duration * 0.1, 3)

    try:
        (
            ffmpeg
            .input(video_path, ss=timestamp)
            .filter("scale", width, -2)
            .output(thumbnail_path, vframes=1)
            .overwrite_output()
            .run(quiet=True)
        )
    except FileNotFoundError as e:
        raise VideoBackendUnavailable(f"Cannot find ffmpeg: {e}") from e
    except ffmpeg.Error as e:
        logger.error(f"Error generating thumbnail for {video_path}: {_stderr_tail(e)}")
        raise RuntimeError(f"Thumbnail generation failed: {_stderr_tail(e)}") from e
    return thumbnail_path


def transcode_video(video_path: str, resolution: str = "720p", fmt: str = "mp4") -> str:
    """
    Transcode to a web-friendly rendition, e.g. ``clip.mov`` -> ``clip_720p.mp4``.
    """
    if resolution not in RESOLUTIONS:
        raise ValueError(f"Unsupported format: resolution {resolution}")
    width, _height, video_bitrate = RESOLUTIONS[resolution]

    stem, _ = os.path.splitext(video_path)
    output_path = f"{stem}_{resolution}.{fmt}"

    try:
        # ffmpeg -i in -vf scale=1280:-2 -b:v 2500k -b:a 128k -movflags faststart out.mp4
        (
            ffmpeg
            .input(video_path)
            .output(
                output_path,
                vf=f"scale={width}:-2",
                video_bitrate=video_bitrate,
                audio_bitrate="128k",
                movflags="faststart",
                format=fmt,
            )
            .overwrite_output()
            .run(quiet=True)
        )
    except FileNotFoundError as e:
        raise VideoBackendUnavailable(f"Cannot find ffmpeg: {e}") from e
    except ffmpeg.Error as e:
        logger.error(f"Error transcoding {video_path}: {_stderr_tail(e)}")
        raise RuntimeError(f"Video transcode failed: {_stderr_tail(e)}") from e
    return output_path
