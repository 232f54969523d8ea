"""Encore job, media and queue models."""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union
from datetime import datetime, timezone
from enum import Enum


class CamelModel(BaseModel):
    """Base model speaking the backend's camelCase wire format."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize for the backend."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class JobStatus(str, Enum):
    """Job status enumeration."""
    NEW = "NEW"
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCESSFUL, JobStatus.FAILED, JobStatus.CANCELLED})


class InputType(str, Enum):
    """Input descriptor kinds."""
    AUDIO_VIDEO = "AudioVideo"
    VIDEO = "Video"
    AUDIO = "Audio"


class Link(CamelModel):
    """HAL link."""
    href: str
    hreflang: Optional[str] = None
    title: Optional[str] = None
    type: Optional[str] = None
    deprecation: Optional[str] = None
    profile: Optional[str] = None
    name: Optional[str] = None
    templated: Optional[bool] = None


class AudioStream(CamelModel):
    """Audio stream metadata."""
    format: Optional[str] = None
    codec: Optional[str] = None
    duration: Optional[float] = None
    channels: int = 0
    channel_layout: Optional[str] = None
    sampling_rate: Optional[int] = None
    bitrate: Optional[int] = None
    profile: Optional[str] = None


class VideoStream(CamelModel):
    """Video stream metadata."""
    format: Optional[str] = None
    codec: Optional[str] = None
    profile: Optional[str] = None
    level: Optional[str] = None
    width: int = 0
    height: int = 0
    sample_aspect_ratio: Optional[str] = None
    display_aspect_ratio: Optional[str] = None
    pixel_format: Optional[str] = None
    frame_rate: Optional[str] = None
    duration: Optional[float] = None
    bitrate: Optional[int] = None
    bit_depth: Optional[int] = None
    num_frames: Optional[int] = None
    is_interlaced: bool = False
    transfer_characteristics: Optional[str] = None
    codec_tag_string: Optional[str] = None

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


class AudioFile(CamelModel):
    type: Literal["AudioFile"] = "AudioFile"
    file: str
    format: Optional[str] = None
    file_size: Optional[int] = None
    overall_bitrate: Optional[int] = None
    duration: Optional[float] = None
    audio_streams: List[AudioStream] = Field(default_factory=list)


class VideoFile(CamelModel):
    type: Literal["VideoFile"] = "VideoFile"
    file: str
    format: Optional[str] = None
    file_size: Optional[int] = None
    overall_bitrate: Optional[int] = None
    duration: Optional[float] = None
    video_streams: List[VideoStream] = Field(default_factory=list)
    audio_streams: List[AudioStream] = Field(default_factory=list)


class ImageFile(CamelModel):
    type: Literal["ImageFile"] = "ImageFile"
    file: str
    format: Optional[str] = None
    file_size: Optional[int] = None
    width: int = 0
    height: int = 0


class SubtitleFile(CamelModel):
    type: Literal["SubtitleFile"] = "SubtitleFile"
    file: str
    format: Optional[str] = None
    file_size: Optional[int] = None


MediaFile = Annotated[
    Union[AudioFile, VideoFile, ImageFile, SubtitleFile],
    Field(discriminator="type"),
]


class Input(CamelModel):
    """Input descriptor of a job."""
    type: InputType = InputType.AUDIO_VIDEO
    uri: str
    access_uri: Optional[str] = None
    params: Dict[str, str] = Field(default_factory=dict)
    copy_ts: bool = True
    seek_to: Optional[float] = None
    analyzed: Optional[MediaFile] = None


class EncoreJob(CamelModel):
    """Encoding job as reported by the backend."""
    id: str
    external_id: Optional[str] = None
    profile: str
    profile_params: Dict[str, Any] = Field(default_factory=dict)
    output_folder: str
    base_name: str
    created_date: datetime
    progress_callback_uri: Optional[str] = None
    priority: int = 0
    segment_length: Optional[float] = None
    message: Optional[str] = None
    progress: int = 0
    speed: Optional[float] = None
    started_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    debug_overlay: bool = False
    log_context: Dict[str, str] = Field(default_factory=dict)
    seek_to: Optional[float] = None
    duration: Optional[float] = None
    thumbnail_time: Optional[float] = None
    inputs: List[Input] = Field(default_factory=list)
    output: List[MediaFile] = Field(default_factory=list)
    status: JobStatus
    links: Optional[Dict[str, Link]] = Field(None, alias="_links")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def failure_message(self) -> Optional[str]:
        """Backend message, only meaningful for failed jobs."""
        if self.status == JobStatus.FAILED:
            return self.message
        return None

    def elapsed(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds spent encoding so far, or in total once completed."""
        if self.started_date is None:
            return None
        end = self.completed_date or now or datetime.now(timezone.utc)
        return (end - self.started_date).total_seconds()


class EncoreJobRequest(CamelModel):
    """Payload for creating or updating a job."""
    external_id: Optional[str] = None
    profile: str = "program"
    profile_params: Dict[str, Any] = Field(default_factory=dict)
    output_folder: str = "/usercontent"
    base_name: str
    progress_callback_uri: Optional[str] = None
    priority: int = Field(0, ge=0, le=100)
    segment_length: Optional[float] = None
    debug_overlay: bool = False
    log_context: Dict[str, str] = Field(default_factory=dict)
    seek_to: Optional[float] = None
    duration: Optional[float] = None
    thumbnail_time: Optional[float] = None
    inputs: List[Input] = Field(min_length=1)


class PageMetadata(CamelModel):
    size: int = 0
    total_elements: int = 0
    total_pages: int = 0
    number: int = 0


class EmbeddedJobs(CamelModel):
    encore_jobs: List[EncoreJob] = Field(default_factory=list)


class PagedJobs(CamelModel):
    """One page of jobs. Spring omits `_embedded` on empty pages."""
    embedded: EmbeddedJobs = Field(default_factory=EmbeddedJobs, alias="_embedded")
    links: Optional[Dict[str, Link]] = Field(None, alias="_links")
    page: PageMetadata = Field(default_factory=PageMetadata)

    @property
    def jobs(self) -> List[EncoreJob]:
        return self.embedded.encore_jobs


class QueueItem(CamelModel):
    """A job waiting for backend capacity."""
    id: str
    priority: int = 0
    created: datetime
    segment: Optional[int] = None


class JobListParams(CamelModel):
    """Query parameters for job listings."""
    page: Optional[int] = Field(None, ge=0)
    size: Optional[int] = Field(None, ge=1)
    sort: Optional[List[str]] = None
    status: Optional[JobStatus] = None

    def to_query(self) -> List[Tuple[str, str]]:
        """Render as ordered query items, repeating `sort`."""
        query: List[Tuple[str, str]] = []
        if self.page is not None:
            query.append(("page", str(self.page)))
        if self.size is not None:
            query.append(("size", str(self.size)))
        for order in self.sort or []:
            query.append(("sort", order))
        if self.status is not None:
            query.append(("status", self.status.value))
        return query
