"""
Sparse encoder options.

Every field is optional; None means "let the encoder decide" and renders no
argument at all. Profiles are derived with merge() rather than mutated.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _flag(flag: str, input_option: bool = False) -> Dict[str, Any]:
    return {"flag": flag, "input": input_option}


class Options(BaseModel):
    """Encoder parameter set. Field metadata carries the command line flag."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Input side (rendered before -i)
    hwaccel: Optional[str] = Field(None, json_schema_extra=_flag("-hwaccel", True))
    seek_time: Optional[float] = Field(None, ge=0, json_schema_extra=_flag("-ss", True))
    native_framerate_input: Optional[bool] = Field(None, json_schema_extra=_flag("-re", True))
    copy_ts: Optional[bool] = Field(None, json_schema_extra=_flag("-copyts", True))

    # Video
    video_codec: Optional[str] = Field(None, json_schema_extra=_flag("-c:v"))
    video_bitrate: Optional[str] = Field(None, json_schema_extra=_flag("-b:v"))
    video_max_bitrate: Optional[str] = Field(None, json_schema_extra=_flag("-maxrate"))
    video_min_bitrate: Optional[str] = Field(None, json_schema_extra=_flag("-minrate"))
    buffer_size: Optional[str] = Field(None, json_schema_extra=_flag("-bufsize"))
    resolution: Optional[str] = Field(None, json_schema_extra=_flag("-s"))
    aspect: Optional[str] = Field(None, json_schema_extra=_flag("-aspect"))
    frame_rate: Optional[float] = Field(None, gt=0, json_schema_extra=_flag("-r"))
    keyframe_interval: Optional[int] = Field(None, json_schema_extra=_flag("-g"))
    bframe: Optional[int] = Field(None, json_schema_extra=_flag("-bf"))
    pixel_format: Optional[str] = Field(None, json_schema_extra=_flag("-pix_fmt"))
    video_profile: Optional[str] = Field(None, json_schema_extra=_flag("-profile:v"))
    video_filter: Optional[str] = Field(None, json_schema_extra=_flag("-vf"))
    preset: Optional[str] = Field(None, json_schema_extra=_flag("-preset"))
    tune: Optional[str] = Field(None, json_schema_extra=_flag("-tune"))
    crf: Optional[int] = Field(None, ge=0, json_schema_extra=_flag("-crf"))
    qscale: Optional[int] = Field(None, json_schema_extra=_flag("-qscale:v"))
    skip_video: Optional[bool] = Field(None, json_schema_extra=_flag("-vn"))

    # Audio
    audio_codec: Optional[str] = Field(None, json_schema_extra=_flag("-c:a"))
    audio_bitrate: Optional[str] = Field(None, json_schema_extra=_flag("-b:a"))
    audio_channels: Optional[int] = Field(None, json_schema_extra=_flag("-ac"))
    audio_rate: Optional[int] = Field(None, json_schema_extra=_flag("-ar"))
    audio_profile: Optional[str] = Field(None, json_schema_extra=_flag("-profile:a"))
    audio_filter: Optional[str] = Field(None, json_schema_extra=_flag("-af"))
    skip_audio: Optional[bool] = Field(None, json_schema_extra=_flag("-an"))

    # Muxing
    threads: Optional[int] = Field(None, ge=0, json_schema_extra=_flag("-threads"))
    duration: Optional[float] = Field(None, gt=0, json_schema_extra=_flag("-t"))
    output_format: Optional[str] = Field(None, json_schema_extra=_flag("-f"))
    movflags: Optional[str] = Field(None, json_schema_extra=_flag("-movflags"))
    strict: Optional[str] = Field(None, json_schema_extra=_flag("-strict"))
    mux_delay: Optional[str] = Field(None, json_schema_extra=_flag("-muxdelay"))
    map_metadata: Optional[str] = Field(None, json_schema_extra=_flag("-map_metadata"))
    metadata: Optional[List[str]] = Field(None, json_schema_extra=_flag("-metadata"))
    stream_ids: Optional[List[str]] = Field(None, json_schema_extra=_flag("-streamid"))

    # HLS
    hls_playlist_type: Optional[str] = Field(None, json_schema_extra=_flag("-hls_playlist_type"))
    hls_list_size: Optional[int] = Field(None, ge=0, json_schema_extra=_flag("-hls_list_size"))
    hls_segment_duration: Optional[int] = Field(None, gt=0, json_schema_extra=_flag("-hls_time"))
    hls_segment_filename: Optional[str] = Field(None, json_schema_extra=_flag("-hls_segment_filename"))
    hls_flags: Optional[str] = Field(None, json_schema_extra=_flag("-hls_flags"))
    hls_master_playlist_name: Optional[str] = Field(None, json_schema_extra=_flag("-master_pl_name"))

    # Raw flag -> value pairs appended after everything else
    extra_args: Optional[Dict[str, Any]] = None

    def input_args(self) -> List[str]:
        return self._render(input_side=True)

    def output_args(self) -> List[str]:
        args = self._render(input_side=False)
        for key, value in (self.extra_args or {}).items():
            args.extend([key, _format_value(value)])
        return args

    def to_args(self) -> List[str]:
        """All arguments, input options first"""
        return self.input_args() + self.output_args()

    def _render(self, input_side: bool) -> List[str]:
        args: List[str] = []
        for name, info in type(self).model_fields.items():
            extra = info.json_schema_extra
            if not isinstance(extra, dict) or extra.get("input") != input_side:
                continue

            value = getattr(self, name)
            if value is None:
                continue

            flag = extra["flag"]
            if isinstance(value, bool):
                if value:
                    args.append(flag)
            elif isinstance(value, list):
                for item in value:
                    args.extend([flag, _format_value(item)])
            else:
                args.extend([flag, _format_value(value)])
        return args


def _format_value(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def merge(base: Options, override: Options) -> Options:
    """
    Field-wise merge of two option sets.

    Any field set in override wins; unset fields fall through to base.
    extra_args maps merge key by key with the same precedence. Neither
    input is modified.
    """
    data = base.model_dump(exclude_none=True)
    updates = override.model_dump(exclude_none=True)

    extra_args = None
    if base.extra_args is not None or override.extra_args is not None:
        extra_args = {**(base.extra_args or {}), **(override.extra_args or {})}

    data.update(updates)
    if extra_args is not None:
        data["extra_args"] = extra_args
    return Options(**data)
