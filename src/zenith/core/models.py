"""
Data model for the generation graph.

Nodes are immutable dataclasses; every change produces a new instance via
dataclasses.replace. Nodes reference each other (and the blob cache) by id
only. The to_dict/from_dict pairs define the persisted JSON shape.
"""

from dataclasses import dataclass
from typing import Any, Literal

from zenith.core.layout import Position

NodeKind = Literal["config", "image"]


@dataclass(frozen=True)
class PreviewInput:
    """Fields the user provides when drafting a generation request."""

    prompt: str
    width: int
    height: int
    batch_count: int
    seed: int


@dataclass(frozen=True)
class ConfigurationNode:
    """One generation request; a preview until confirmed."""

    id: str
    prompt: str
    width: int
    height: int
    batch_count: int
    seed: int
    timestamp: int  # ms since epoch
    is_preview: bool
    position: Position = Position(0, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "width": self.width,
            "height": self.height,
            "batchCount": self.batch_count,
            "seed": self.seed,
            "timestamp": self.timestamp,
            "isPreview": self.is_preview,
            "position": self.position.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConfigurationNode":
        return cls(
            id=data["id"],
            prompt=data.get("prompt", ""),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            batch_count=int(data.get("batchCount", 0)),
            seed=int(data.get("seed", 0)),
            timestamp=int(data.get("timestamp", 0)),
            is_preview=bool(data.get("isPreview", False)),
            position=Position.from_dict(data.get("position") or {}),
        )


@dataclass(frozen=True)
class ImageNode:
    """One expected output of a configuration; owned by exactly one ConfigurationNode."""

    id: str
    config_id: str
    prompt: str
    width: int
    height: int
    seed: int
    position: Position = Position(0, 0)
    image_url: str | None = None
    blob_id: str | None = None  # key in the blob cache
    duration: str | None = None
    is_loading: bool = True
    error: str | None = None

    @property
    def is_ready(self) -> bool:
        return not self.is_loading and self.error is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "configId": self.config_id,
            "prompt": self.prompt,
            "width": self.width,
            "height": self.height,
            "seed": self.seed,
            "isLoading": self.is_loading,
            "position": self.position.to_dict(),
        }
        # Optional fields are omitted rather than stored as null
        if self.image_url is not None:
            data["imageUrl"] = self.image_url
        if self.blob_id is not None:
            data["imageBlobId"] = self.blob_id
        if self.duration is not None:
            data["duration"] = self.duration
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageNode":
        return cls(
            id=data["id"],
            config_id=data["configId"],
            prompt=data.get("prompt", ""),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            seed=int(data.get("seed", 0)),
            position=Position.from_dict(data.get("position") or {}),
            image_url=data.get("imageUrl"),
            blob_id=data.get("imageBlobId"),
            duration=data.get("duration"),
            is_loading=bool(data.get("isLoading", False)),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class FlowNode:
    """Flattened node as handed to a renderer."""

    id: str
    kind: NodeKind
    position: Position
    data: ConfigurationNode | ImageNode
    draggable: bool
    is_preview: bool = False


@dataclass(frozen=True)
class Edge:
    """Connection from a configuration node to one of its image nodes."""

    id: str
    source: str
    target: str


@dataclass
class GenerationResult:
    """Successful result record returned by the provider proxy for one image.

    Only ``url`` (a fetchable reference to the image bytes) and
    ``duration_label`` are needed by the graph; the rest is display metadata.
    """

    url: str
    provider_display_name: str = ""
    model_display_name: str = ""
    dimensions_label: str = ""
    duration_label: str = ""
    seed: int | None = None
    steps: int | None = None
    prompt: str = ""
    negative_prompt: str = ""


__all__ = [
    "ConfigurationNode",
    "Edge",
    "FlowNode",
    "GenerationResult",
    "ImageNode",
    "NodeKind",
    "PreviewInput",
]
