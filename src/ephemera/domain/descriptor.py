"""Declarative description of one ephemeral dependency.

A `ResourceDescriptor` says *what* should be provisioned (image, environment,
ports, lifetime); it never holds runtime state. Descriptors are built when a
suite is configured and are immutable afterwards.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

MIN_PORT = 1
MAX_PORT = 65535


class ResourceKind(str, Enum):
    """Category of an ephemeral dependency.

    The kind decides the default health check, the default URL shape and
    which state resetter makes sense for the resource.
    """

    DATABASE = "database"
    CACHE = "cache"
    DOCUMENT = "document"
    QUEUE = "queue"

    @classmethod
    def from_string(cls, raw: str) -> ResourceKind:
        """Parse a kind token (case-insensitive).

        Raises:
            ValueError: if the token is not a known kind.
        """
        token = (raw or "").strip().lower()
        for member in cls:
            if member.value == token:
                return member
        raise ValueError(f"Unknown resource kind: {raw!r}")


class LifetimePolicy(str, Enum):
    """How long a provisioned resource outlives the scope that started it.

    Attributes:
        SESSION: torn down when the owning scope drains.
        PERSISTENT: left running on teardown and reattached on the next start.
    """

    SESSION = "session"
    PERSISTENT = "persistent"

    @classmethod
    def from_string(cls, raw: str) -> LifetimePolicy:
        """Parse a lifetime token (`session` | `persistent`).

        Raises:
            ValueError: if the token is not a known lifetime.
        """
        token = (raw or "").strip().lower()
        if token == cls.SESSION.value:
            return cls.SESSION
        if token == cls.PERSISTENT.value:
            return cls.PERSISTENT
        raise ValueError(
            f"Unknown lifetime policy: {raw!r} (expected 'session' or 'persistent')"
        )


@dataclass(frozen=True)
class ResourceDescriptor:  # pylint: disable=too-many-instance-attributes
    """Immutable description of one ephemeral dependency.

    Attributes:
        name: Key the resource is registered under inside its scope (e.g. "db").
        kind: Resource category.
        image: Container image reference, ``name:tag`` or ``name@digest``.
        environment: Environment variables passed to the container
            (credentials, database name, ...). Exposed read-only.
        port: Port the service listens on inside the container.
        host_port: Fixed host port to bind, or ``None`` for a random one.
        lifetime: Lifetime policy.
        url_template: Optional connection URL template for generic images,
            e.g. ``"amqp://{RABBITMQ_DEFAULT_USER}:{RABBITMQ_DEFAULT_PASS}@{host}:{port}/"``.
            Placeholders are ``host``, ``port`` and every environment key.
    """

    name: str
    kind: ResourceKind
    image: str
    port: int
    environment: Mapping[str, str] = field(default_factory=dict)
    host_port: int | None = None
    lifetime: LifetimePolicy = LifetimePolicy.SESSION
    url_template: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Resource name must not be empty")
        if not self.image or not self.image.strip():
            raise ValueError(f"Resource {self.name!r}: image must not be empty")
        if not _has_tag_or_digest(self.image):
            raise ValueError(
                f"Resource {self.name!r}: image {self.image!r} must include a tag "
                "or digest (e.g. 'postgres:17')"
            )
        for label, value in (("port", self.port), ("host_port", self.host_port)):
            if value is not None and not MIN_PORT <= value <= MAX_PORT:
                raise ValueError(
                    f"Resource {self.name!r}: {label} {value} is out of range"
                )
        # accept plain strings for the enums, as read from config files
        if not isinstance(self.kind, ResourceKind):
            object.__setattr__(self, "kind", ResourceKind.from_string(self.kind))
        if not isinstance(self.lifetime, LifetimePolicy):
            object.__setattr__(
                self, "lifetime", LifetimePolicy.from_string(self.lifetime)
            )
        frozen_env = MappingProxyType(
            {str(k): str(v) for k, v in dict(self.environment).items()}
        )
        object.__setattr__(self, "environment", frozen_env)

    def __hash__(self) -> int:
        return hash((self.name, self.kind, self.image, self.port, self.lifetime))

    @property
    def image_name(self) -> str:
        """The image reference without its tag."""
        return self.image.split("@", 1)[0].rsplit(":", 1)[0]

    @property
    def container_name(self) -> str:
        """Deterministic container name, used to reattach persistent resources.

        The digest covers everything that changes what would be launched, so
        editing the descriptor never reattaches to a stale container.
        """
        material = "|".join(
            [
                self.image,
                str(self.port),
                str(self.host_port),
                *(f"{k}={v}" for k, v in sorted(self.environment.items())),
            ]
        )
        digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:12]
        return f"ephemera-{self.name}-{digest}"

    def render_url(self, host: str, port: int) -> str | None:
        """Render `url_template` for a concrete endpoint, if a template is set."""
        if self.url_template is None:
            return None
        return self.url_template.format(host=host, port=port, **self.environment)


def _has_tag_or_digest(image: str) -> bool:
    if "@" in image:
        return True
    # the last path segment carries the tag; a registry port is not a tag
    last_segment = image.rsplit("/", 1)[-1]
    return ":" in last_segment and not last_segment.endswith(":")
