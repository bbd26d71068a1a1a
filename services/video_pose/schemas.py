from typing import List

from pydantic import BaseModel, ConfigDict, Field

from services.video_pose.core.ResultAssembler import FrameResult


class LandmarkModel(BaseModel):
    name: str
    x: float
    y: float
    z: float
    visibility: float = Field(1.0, ge=0.0, le=1.0)
    presence: float = Field(1.0, ge=0.0, le=1.0)


class FrameResultModel(BaseModel):
    """One sampled frame as the host application receives it."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: float = Field(..., description="Frame timestamp in milliseconds.")
    frame_image: str = Field(
        ...,
        alias="frameImage",
        pattern=r"^data:image/jpeg;base64,[A-Za-z0-9+/=]+$",
        description="JPEG preview as a data URI.",
    )
    landmarks: List[LandmarkModel]

    @classmethod
    def from_result(cls, result: FrameResult) -> "FrameResultModel":
        return cls(
            timestamp=result.timestamp_ms,
            frame_image=result.preview_image_uri,
            landmarks=[
                LandmarkModel(
                    name=lm.name,
                    x=lm.x,
                    y=lm.y,
                    z=lm.z,
                    visibility=lm.visibility,
                    presence=lm.presence,
                )
                for lm in result.landmarks
            ],
        )


def to_host_payload(results: List[FrameResult]) -> List[dict]:
    return [FrameResultModel.from_result(r).model_dump(by_alias=True) for r in results]
