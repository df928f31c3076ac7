"""Graph store for users, events, sections, videos and role tags.

Backed by an in-memory ``rdflib`` graph that is loaded from and checkpointed to
a Turtle file. A graph is a set of triples, so a user can hold a given role on
a given target only once.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from enum import Enum
from pathlib import Path

from rdflib import RDF, Graph, Literal, Namespace, URIRef

from .config import settings
from .errors import AlreadyTagged, TagNotFound, TargetNotFound, UserNotFound
from .roles import from_storage_format, to_storage_format

logger = logging.getLogger("uvicorn.error")

NS = Namespace("urn:dancechives:")
ROLE_NS = Namespace("urn:dancechives:role/")

VIDEO_TYPES = ("battle", "freestyle", "choreography", "class", "other")

_USER_TAGGED_IN_VIDEO = """
ASK {
    ?user ?role ?video .
    ?video dc:inSection ?section .
    ?section dc:inEvent ?event .
    FILTER(STRSTARTS(STR(?role), "urn:dancechives:role/"))
}
"""


class TargetType(str, Enum):
    EVENT = "event"
    SECTION = "section"
    VIDEO = "video"


_TARGET_CLASSES = {
    TargetType.EVENT: NS.Event,
    TargetType.SECTION: NS.Section,
    TargetType.VIDEO: NS.Video,
}


def _node(kind: str, node_id: str) -> URIRef:
    return NS[f"{kind}/{node_id}"]


def _node_id(node) -> str:
    return str(node).rsplit("/", 1)[-1]


def _role_predicate(role: str) -> URIRef:
    return ROLE_NS[to_storage_format(role)]


class GraphStore:
    """Thread-safe wrapper around an rdflib graph.

    Every read and write takes ``self.lock``; ``apply_tag`` checks and inserts
    under the same acquisition.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else None
        self.graph = Graph()
        self.graph.bind("dc", NS)
        self.graph.bind("role", ROLE_NS)
        self.lock = threading.RLock()
        self.dirty = False
        if self.path and self.path.exists():
            self.graph.parse(str(self.path), format="turtle")
            logger.info("Loaded %s triples from %s", len(self.graph), self.path)

    def __len__(self) -> int:
        with self.lock:
            return len(self.graph)

    # -- node existence -------------------------------------------------

    def _is_a(self, node: URIRef, cls: URIRef) -> bool:
        return (node, RDF.type, cls) in self.graph

    def user_exists(self, user_id: str) -> bool:
        with self.lock:
            return self._is_a(_node("user", user_id), NS.User)

    def event_exists(self, event_id: str) -> bool:
        with self.lock:
            return self._is_a(_node("event", event_id), NS.Event)

    def section_exists_in_event(self, event_id: str, section_id: str) -> bool:
        with self.lock:
            section = _node("section", section_id)
            return self._is_a(section, NS.Section) and (
                section,
                NS.inEvent,
                _node("event", event_id),
            ) in self.graph

    def video_exists_in_event(self, event_id: str, video_id: str) -> bool:
        with self.lock:
            video = _node("video", video_id)
            if not self._is_a(video, NS.Video):
                return False
            section = self.graph.value(video, NS.inSection)
            return (
                section is not None
                and (section, NS.inEvent, _node("event", event_id)) in self.graph
            )

    def target_exists(self, target_type: TargetType, target_id: str) -> bool:
        with self.lock:
            return self._is_a(
                _node(target_type.value, target_id), _TARGET_CLASSES[target_type]
            )

    def is_user_tagged_in_video(
        self, event_id: str, video_id: str, user_id: str
    ) -> bool:
        """Return True when the user holds any role on the video of that event."""
        with self.lock:
            result = self.graph.query(
                _USER_TAGGED_IN_VIDEO,
                initNs={"dc": NS},
                initBindings={
                    "user": _node("user", user_id),
                    "video": _node("video", video_id),
                    "event": _node("event", event_id),
                },
            )
            return bool(result.askAnswer)

    # -- team membership ------------------------------------------------

    def is_team_member(self, event_id: str, user_id: str) -> bool:
        with self.lock:
            return (
                _node("user", user_id),
                NS.teamMember,
                _node("event", event_id),
            ) in self.graph

    def add_team_member(self, event_id: str, user_id: str) -> None:
        """Add a team-membership edge; adding an existing member is a no-op."""
        with self.lock:
            if not self.event_exists(event_id):
                raise TargetNotFound(f"Event {event_id} not found")
            if not self.user_exists(user_id):
                raise UserNotFound(f"User {user_id} not found")
            triple = (_node("user", user_id), NS.teamMember, _node("event", event_id))
            if triple not in self.graph:
                self.graph.add(triple)
                self.dirty = True

    def remove_team_member(self, event_id: str, user_id: str) -> bool:
        with self.lock:
            triple = (_node("user", user_id), NS.teamMember, _node("event", event_id))
            if triple not in self.graph:
                return False
            self.graph.remove(triple)
            self.dirty = True
            return True

    def get_event_team_members(self, event_id: str) -> list[str]:
        with self.lock:
            return sorted(
                _node_id(user)
                for user in self.graph.subjects(NS.teamMember, _node("event", event_id))
            )

    def get_user_team_memberships(self, user_id: str) -> list[str]:
        with self.lock:
            return sorted(
                _node_id(event)
                for event in self.graph.objects(_node("user", user_id), NS.teamMember)
            )

    # -- tags -----------------------------------------------------------

    def has_tag(
        self, target_type: TargetType, target_id: str, user_id: str, role: str
    ) -> bool:
        with self.lock:
            return (
                _node("user", user_id),
                _role_predicate(role),
                _node(target_type.value, target_id),
            ) in self.graph

    def apply_tag(
        self, target_type: TargetType, target_id: str, user_id: str, role: str
    ) -> None:
        """Create the tag or raise; the check and the insert are one step."""
        with self.lock:
            if not self.target_exists(target_type, target_id):
                raise TargetNotFound(
                    f"{target_type.value.capitalize()} {target_id} not found"
                )
            if not self.user_exists(user_id):
                raise UserNotFound(f"User {user_id} not found")
            triple = (
                _node("user", user_id),
                _role_predicate(role),
                _node(target_type.value, target_id),
            )
            if triple in self.graph:
                raise AlreadyTagged(
                    f"User {user_id} is already tagged as {role} on this {target_type.value}"
                )
            self.graph.add(triple)
            self.dirty = True

    def remove_tag(
        self, target_type: TargetType, target_id: str, user_id: str, role: str
    ) -> None:
        with self.lock:
            triple = (
                _node("user", user_id),
                _role_predicate(role),
                _node(target_type.value, target_id),
            )
            if triple not in self.graph:
                raise TagNotFound(
                    f"User {user_id} is not tagged as {role} on this {target_type.value}"
                )
            self.graph.remove(triple)
            self.dirty = True

    def get_tagged_user_ids(
        self, target_type: TargetType, target_id: str, role: str
    ) -> list[str]:
        with self.lock:
            return sorted(
                _node_id(user)
                for user in self.graph.subjects(
                    _role_predicate(role), _node(target_type.value, target_id)
                )
            )

    def get_user_roles(
        self, target_type: TargetType, target_id: str, user_id: str
    ) -> list[str]:
        target = _node(target_type.value, target_id)
        roles = []
        with self.lock:
            for predicate in self.graph.predicates(_node("user", user_id), target):
                if str(predicate).startswith(str(ROLE_NS)):
                    roles.append(from_storage_format(_node_id(predicate)))
        return sorted(roles)

    # -- projections ----------------------------------------------------

    def _literal(self, node: URIRef, predicate: URIRef) -> str | None:
        with self.lock:
            value = self.graph.value(node, predicate)
        return str(value) if value is not None else None

    def get_event_creator(self, event_id: str) -> str | None:
        with self.lock:
            creator = next(
                self.graph.subjects(NS.created, _node("event", event_id)), None
            )
        return _node_id(creator) if creator is not None else None

    def is_event_creator(self, event_id: str, user_id: str) -> bool:
        return self.get_event_creator(event_id) == user_id

    def get_event_title(self, event_id: str) -> str | None:
        return self._literal(_node("event", event_id), NS.title)

    def get_event_type(self, event_id: str) -> str | None:
        return self._literal(_node("event", event_id), NS.eventType)

    def get_event_city_id(self, event_id: str) -> str | None:
        with self.lock:
            city = self.graph.value(_node("event", event_id), NS.inCity)
        return _node_id(city) if city is not None else None

    def get_city_name(self, city_id: str) -> str | None:
        return self._literal(_node("city", city_id), NS.name)

    def get_section_title(self, section_id: str) -> str | None:
        return self._literal(_node("section", section_id), NS.title)

    def get_video_title(self, video_id: str) -> str | None:
        return self._literal(_node("video", video_id), NS.title)

    def get_video_type(self, video_id: str) -> str | None:
        return self._literal(_node("video", video_id), NS.videoType)

    def get_user_name(self, user_id: str) -> str | None:
        return self._literal(_node("user", user_id), NS.name)

    # -- node upserts ---------------------------------------------------

    def _set(self, node: URIRef, predicate: URIRef, value) -> None:
        self.graph.set((node, predicate, value))

    def add_user(self, user_id: str, name: str | None = None) -> None:
        with self.lock:
            node = _node("user", user_id)
            self.graph.add((node, RDF.type, NS.User))
            if name:
                self._set(node, NS.name, Literal(name))
            self.dirty = True

    def add_city(self, city_id: str, name: str) -> None:
        with self.lock:
            node = _node("city", city_id)
            self.graph.add((node, RDF.type, NS.City))
            self._set(node, NS.name, Literal(name))
            self.dirty = True

    def add_event(
        self,
        event_id: str,
        *,
        title: str,
        creator_id: str,
        city_id: str | None = None,
        event_type: str = "battle",
    ) -> None:
        with self.lock:
            if not self.user_exists(creator_id):
                raise UserNotFound(f"User {creator_id} not found")
            node = _node("event", event_id)
            self.graph.add((node, RDF.type, NS.Event))
            self._set(node, NS.title, Literal(title))
            self._set(node, NS.eventType, Literal(event_type))
            self.graph.remove((None, NS.created, node))
            self.graph.add((_node("user", creator_id), NS.created, node))
            if city_id:
                if not self._is_a(_node("city", city_id), NS.City):
                    raise TargetNotFound(f"City {city_id} not found")
                self._set(node, NS.inCity, _node("city", city_id))
            self.dirty = True

    def add_section(self, event_id: str, section_id: str, *, title: str) -> None:
        with self.lock:
            if not self.event_exists(event_id):
                raise TargetNotFound(f"Event {event_id} not found")
            node = _node("section", section_id)
            self.graph.add((node, RDF.type, NS.Section))
            self._set(node, NS.title, Literal(title))
            self._set(node, NS.inEvent, _node("event", event_id))
            self.dirty = True

    def add_video(
        self,
        event_id: str,
        section_id: str,
        video_id: str,
        *,
        title: str,
        video_type: str = "battle",
    ) -> None:
        if video_type not in VIDEO_TYPES:
            raise ValueError(f"Unknown video type: {video_type}")
        with self.lock:
            if not self.section_exists_in_event(event_id, section_id):
                raise TargetNotFound(f"Section {section_id} not found")
            node = _node("video", video_id)
            self.graph.add((node, RDF.type, NS.Video))
            self._set(node, NS.title, Literal(title))
            self._set(node, NS.videoType, Literal(video_type))
            self._set(node, NS.inSection, _node("section", section_id))
            self.dirty = True

    # -- persistence ----------------------------------------------------

    def export(self, format: str = "turtle") -> str:
        with self.lock:
            return self.graph.serialize(format=format)

    def checkpoint(self) -> bool:
        """Write the graph to ``self.path`` if it changed since the last write."""
        with self.lock:
            if not self.path or not self.dirty:
                return False
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=".graph-", suffix=".ttl"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(self.graph.serialize(format="turtle"))
                os.replace(tmp_name, self.path)
            except Exception:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
            self.dirty = False
            logger.debug("Checkpointed %s triples to %s", len(self.graph), self.path)
            return True


_store: GraphStore | None = None


def get_store() -> GraphStore:
    """Return the process-wide store, loading it from ``settings.graph_path``."""
    global _store
    if _store is None:
        _store = GraphStore(settings.graph_path)
    return _store


def set_store(store: GraphStore | None) -> None:
    global _store
    _store = store
