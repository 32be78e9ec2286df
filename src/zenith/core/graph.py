"""
Generation graph: configuration nodes, their image nodes, and transient UI state.

The graph is an immutable GraphState. Every command is a pure function
``(state, ...) -> state`` (some also return a value), so a caller always
computes the complete next state before publishing it. GraphStore holds the
current state, publishes each transition as a single assignment, notifies
subscribers, and serializes the persisted part through a KeyValueStore.

Nodes live in flat dicts keyed by id (insertion order = creation order);
image nodes point at their owner by id and at the blob cache by blob id.
"""

import json
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from zenith.core.layout import Position, config_position, image_position
from zenith.core.models import (
    ConfigurationNode,
    Edge,
    FlowNode,
    ImageNode,
    PreviewInput,
)
from zenith.logging_config import get_logger, log_prompts
from zenith.storage.base import KeyValueStore
from zenith.utils.exceptions import PersistenceError

logger = get_logger(__name__)

STORAGE_KEY = "zenith-flow-v2-storage"

Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def _freeze(nodes: dict) -> Mapping:
    return MappingProxyType(nodes)


@dataclass(frozen=True)
class GraphState:
    """Snapshot of the whole graph plus transient (never persisted) UI state."""

    config_nodes: Mapping[str, ConfigurationNode] = field(
        default_factory=lambda: _freeze({})
    )
    image_nodes: Mapping[str, ImageNode] = field(default_factory=lambda: _freeze({}))
    next_id_counter: int = 0

    # Transient state
    preview: ConfigurationNode | None = None
    editing_config_id: str | None = None
    is_editing_modified: bool = False
    lightbox_image_id: str | None = None

    def images_of(self, config_id: str) -> list[ImageNode]:
        """Image nodes owned by a configuration, in batch order."""
        return [n for n in self.image_nodes.values() if n.config_id == config_id]

    def to_record(self) -> dict[str, Any]:
        """Persisted part of the state."""
        return {
            "configNodes": [n.to_dict() for n in self.config_nodes.values()],
            "imageNodes": [n.to_dict() for n in self.image_nodes.values()],
            "nextIdCounter": self.next_id_counter,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "GraphState":
        config_nodes = [ConfigurationNode.from_dict(d) for d in record.get("configNodes", [])]
        image_nodes = [ImageNode.from_dict(d) for d in record.get("imageNodes", [])]
        return cls(
            config_nodes=_freeze({n.id: n for n in config_nodes}),
            image_nodes=_freeze({n.id: n for n in image_nodes}),
            next_id_counter=int(record.get("nextIdCounter", 0)),
        )


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------


def next_config_position(state: GraphState) -> Position:
    """Slot for the next confirmed configuration (also where the preview is drawn)."""
    return config_position(len(state.config_nodes))


def set_preview(state: GraphState, draft: PreviewInput | None, now: int) -> GraphState:
    if draft is None:
        return replace(state, preview=None)
    preview = ConfigurationNode(
        id=f"preview-{state.next_id_counter + 1}",
        prompt=draft.prompt,
        width=draft.width,
        height=draft.height,
        batch_count=draft.batch_count,
        seed=draft.seed,
        timestamp=now,
        is_preview=True,
        position=next_config_position(state),
    )
    return replace(state, preview=preview)


def confirm_preview(state: GraphState) -> tuple[GraphState, str | None]:
    """Materialize the preview into a configuration node and its batch of image nodes."""
    preview = state.preview
    if preview is None:
        return state, None

    counter = state.next_id_counter
    config_id = f"config-{counter + 1}"
    position = next_config_position(state)
    config_node = replace(preview, id=config_id, is_preview=False, position=position)

    config_nodes = dict(state.config_nodes)
    config_nodes[config_id] = config_node
    image_nodes = dict(state.image_nodes)
    for i in range(max(preview.batch_count, 0)):
        image_id = f"image-{counter + 2 + i}"
        image_nodes[image_id] = ImageNode(
            id=image_id,
            config_id=config_id,
            prompt=preview.prompt,
            width=preview.width,
            height=preview.height,
            seed=preview.seed + i,
            position=image_position(position, i),
        )

    new_state = replace(
        state,
        config_nodes=_freeze(config_nodes),
        image_nodes=_freeze(image_nodes),
        preview=None,
        editing_config_id=None,
        is_editing_modified=False,
        next_id_counter=counter + 1 + max(preview.batch_count, 0),
    )
    return new_state, config_id


def load_for_editing(
    state: GraphState, config_id: str
) -> tuple[GraphState, ConfigurationNode | None]:
    node = state.config_nodes.get(config_id)
    if node is None:
        return state, None
    return (
        replace(state, editing_config_id=config_id, is_editing_modified=False, preview=None),
        node,
    )


def clear_editing(state: GraphState) -> GraphState:
    return replace(state, editing_config_id=None, is_editing_modified=False)


def set_editing_modified(state: GraphState, modified: bool) -> GraphState:
    return replace(state, is_editing_modified=modified)


def update_position(state: GraphState, config_id: str, x: float, y: float) -> GraphState:
    """Move a configuration and rigidly translate its image nodes."""
    node = state.config_nodes.get(config_id)
    if node is None:
        return state

    dx = x - node.position.x
    dy = y - node.position.y

    config_nodes = dict(state.config_nodes)
    config_nodes[config_id] = replace(node, position=Position(x, y))
    image_nodes = {
        image_id: (
            replace(img, position=img.position.translate(dx, dy))
            if img.config_id == config_id
            else img
        )
        for image_id, img in state.image_nodes.items()
    }
    return replace(state, config_nodes=_freeze(config_nodes), image_nodes=_freeze(image_nodes))


def _replace_image(state: GraphState, image_id: str, **changes: Any) -> GraphState:
    node = state.image_nodes.get(image_id)
    if node is None:
        return state
    image_nodes = dict(state.image_nodes)
    image_nodes[image_id] = replace(node, **changes)
    return replace(state, image_nodes=_freeze(image_nodes))


def mark_image_ready(
    state: GraphState,
    image_id: str,
    url: str | None,
    duration: str | None,
    blob_id: str | None = None,
) -> GraphState:
    return _replace_image(
        state,
        image_id,
        image_url=url,
        blob_id=blob_id,
        duration=duration,
        is_loading=False,
        error=None,
    )


def mark_image_failed(state: GraphState, image_id: str, error: str) -> GraphState:
    return _replace_image(state, image_id, error=error, is_loading=False)


def detach_blobs(state: GraphState, blob_ids: Iterable[str]) -> GraphState:
    """Drop references to blobs that no longer exist (e.g. after eviction)."""
    gone = set(blob_ids)
    if not gone or not any(n.blob_id in gone for n in state.image_nodes.values()):
        return state
    image_nodes = {
        image_id: replace(img, blob_id=None) if img.blob_id in gone else img
        for image_id, img in state.image_nodes.items()
    }
    return replace(state, image_nodes=_freeze(image_nodes))


def delete_config(state: GraphState, config_id: str) -> tuple[GraphState, list[str]]:
    """Remove a configuration and all its image nodes; return the blob ids to purge."""
    if config_id not in state.config_nodes:
        return state, []

    blob_ids = [
        n.blob_id for n in state.image_nodes.values() if n.config_id == config_id and n.blob_id
    ]
    config_nodes = {k: v for k, v in state.config_nodes.items() if k != config_id}
    image_nodes = {k: v for k, v in state.image_nodes.items() if v.config_id != config_id}

    editing = state.editing_config_id
    lightbox = state.lightbox_image_id
    new_state = replace(
        state,
        config_nodes=_freeze(config_nodes),
        image_nodes=_freeze(image_nodes),
        editing_config_id=None if editing == config_id else editing,
        is_editing_modified=False if editing == config_id else state.is_editing_modified,
        lightbox_image_id=lightbox if lightbox in image_nodes else None,
    )
    return new_state, blob_ids


def clear_all(state: GraphState) -> GraphState:
    return GraphState()


def set_lightbox_image(state: GraphState, image_id: str | None) -> GraphState:
    return replace(state, lightbox_image_id=image_id)


def all_nodes(state: GraphState) -> list[FlowNode]:
    """Confirmed configuration nodes, image nodes, and the preview at the next slot."""
    nodes = [
        FlowNode(id=n.id, kind="config", position=n.position, data=n, draggable=True)
        for n in state.config_nodes.values()
    ]
    nodes.extend(
        FlowNode(id=n.id, kind="image", position=n.position, data=n, draggable=False)
        for n in state.image_nodes.values()
    )
    if state.preview is not None:
        position = next_config_position(state)
        nodes.append(
            FlowNode(
                id=state.preview.id,
                kind="config",
                position=position,
                data=replace(state.preview, position=position),
                draggable=False,
                is_preview=True,
            )
        )
    return nodes


def all_edges(state: GraphState) -> list[Edge]:
    return [
        Edge(id=f"edge-{n.config_id}-{n.id}", source=n.config_id, target=n.id)
        for n in state.image_nodes.values()
    ]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class GraphStore:
    """Holds the current GraphState and persists it through a KeyValueStore.

    Each command computes the next state synchronously and publishes it with a
    single assignment before awaiting persistence, so concurrent readers only
    ever see whole states. Persistence failures are logged and reported as
    False; the in-memory state is not rolled back.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        key: str = STORAGE_KEY,
        clock: Clock = now_ms,
    ) -> None:
        self._storage = storage
        self._key = key
        self._clock = clock
        self._state = GraphState()
        self._listeners: list[Callable[[GraphState], None]] = []
        self.has_hydrated = False

    @property
    def state(self) -> GraphState:
        return self._state

    async def open(self) -> bool:
        """Open the substrate and hydrate persisted nodes. Returns False if loading failed."""
        try:
            await self._storage.open()
            raw = await self._storage.get(self._key)
        except PersistenceError as e:
            logger.error("Failed to load graph from storage: %s", e)
            self.has_hydrated = True
            return False
        if raw:
            try:
                self._publish(GraphState.from_record(json.loads(raw)))
            except (ValueError, KeyError, TypeError) as e:
                logger.error("Discarding unreadable graph record %s: %s", self._key, e)
        self.has_hydrated = True
        logger.info(
            "Graph hydrated configs=%d images=%d",
            len(self._state.config_nodes),
            len(self._state.image_nodes),
        )
        return True

    async def close(self) -> None:
        await self._storage.close()

    def subscribe(self, listener: Callable[[GraphState], None]) -> Callable[[], None]:
        """Call listener with every published state; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, new_state: GraphState) -> bool:
        """Replace the current state; return True if the persisted part changed."""
        old = self._state
        if new_state is old:
            return False
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)
        return (
            new_state.config_nodes is not old.config_nodes
            or new_state.image_nodes is not old.image_nodes
            or new_state.next_id_counter != old.next_id_counter
        )

    async def _commit(self, new_state: GraphState) -> bool:
        if not self._publish(new_state):
            return True
        return await self.persist()

    async def persist(self) -> bool:
        """Write the persisted part of the current state; False on I/O failure."""
        payload = json.dumps(self._state.to_record())
        try:
            await self._storage.set(self._key, payload)
        except PersistenceError as e:
            logger.error("Failed to save graph to storage: %s", e)
            return False
        logger.debug("Graph persisted bytes=%d", len(payload))
        return True

    # Commands

    async def set_preview(self, draft: PreviewInput | None) -> None:
        self._publish(set_preview(self._state, draft, self._clock()))

    async def confirm_preview(self) -> str | None:
        new_state, config_id = confirm_preview(self._state)
        if config_id is None:
            return None
        node = new_state.config_nodes[config_id]
        logger.info(
            "Confirmed %s batch=%d seed=%d size=%dx%d",
            config_id,
            node.batch_count,
            node.seed,
            node.width,
            node.height,
        )
        if log_prompts():
            logger.info("Prompt (%s): %s", config_id, node.prompt)
        await self._commit(new_state)
        return config_id

    async def load_for_editing(self, config_id: str) -> ConfigurationNode | None:
        new_state, node = load_for_editing(self._state, config_id)
        self._publish(new_state)
        return node

    async def clear_editing(self) -> None:
        self._publish(clear_editing(self._state))

    async def set_editing_modified(self, modified: bool) -> None:
        self._publish(set_editing_modified(self._state, modified))

    async def update_position(self, config_id: str, x: float, y: float) -> None:
        await self._commit(update_position(self._state, config_id, x, y))

    async def mark_image_ready(
        self,
        image_id: str,
        url: str | None,
        duration: str | None,
        blob_id: str | None = None,
    ) -> None:
        await self._commit(mark_image_ready(self._state, image_id, url, duration, blob_id))

    async def mark_image_failed(self, image_id: str, error: str) -> None:
        await self._commit(mark_image_failed(self._state, image_id, error))

    async def detach_blobs(self, blob_ids: Iterable[str]) -> None:
        await self._commit(detach_blobs(self._state, blob_ids))

    async def delete_config(self, config_id: str) -> list[str]:
        """Remove a configuration and its images; returns blob ids the caller must purge."""
        new_state, blob_ids = delete_config(self._state, config_id)
        if new_state is self._state:
            return []
        logger.info("Deleted %s blobs=%d", config_id, len(blob_ids))
        await self._commit(new_state)
        return blob_ids

    async def clear_all(self) -> None:
        logger.info("Clearing graph")
        await self._commit(clear_all(self._state))

    async def set_lightbox_image(self, image_id: str | None) -> None:
        self._publish(set_lightbox_image(self._state, image_id))

    # Read views

    def all_nodes(self) -> list[FlowNode]:
        return all_nodes(self._state)

    def all_edges(self) -> list[Edge]:
        return all_edges(self._state)

    def next_config_position(self) -> Position:
        return next_config_position(self._state)

    def get_image(self, image_id: str) -> ImageNode | None:
        return self._state.image_nodes.get(image_id)

    def get_config(self, config_id: str) -> ConfigurationNode | None:
        return self._state.config_nodes.get(config_id)


__all__ = [
    "GraphState",
    "GraphStore",
    "STORAGE_KEY",
    "all_edges",
    "all_nodes",
    "clear_all",
    "clear_editing",
    "confirm_preview",
    "delete_config",
    "detach_blobs",
    "load_for_editing",
    "mark_image_failed",
    "mark_image_ready",
    "next_config_position",
    "now_ms",
    "set_editing_modified",
    "set_lightbox_image",
    "set_preview",
    "update_position",
]
