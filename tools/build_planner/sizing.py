"""Image size lookups and layer size estimation."""

import threading
from concurrent.futures import Future
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import docker

from shared.logger import get_logger

from .config import PlannerConfig, SizeHints
from .errors import LookupUnavailableError
from .models import EstimatedBuild, Layer, LayerProvenance, StageGraph, materialize_layers

logger = get_logger(__name__)

MB = 1024 * 1024

# Uncompressed sizes of common official images, in MB
KNOWN_IMAGE_SIZES_MB = {
    "node:12": 918,
    "node:12-slim": 141,
    "node:12-alpine": 89,
    "node:14": 943,
    "node:14-slim": 167,
    "node:14-alpine": 117,
    "node:16": 907,
    "node:16-slim": 175,
    "node:16-alpine": 115,
    "node:18": 1000,
    "node:18-slim": 240,
    "node:18-alpine": 175,
    "node:20": 1100,
    "node:20-slim": 200,
    "node:20-alpine": 135,
    "node:latest": 1100,
    "node:slim": 200,
    "node:alpine": 135,
    "nginx:latest": 187,
    "nginx:alpine": 43,
    "nginx:stable": 187,
    "nginx:stable-alpine": 43,
    "nginx:mainline": 187,
    "nginx:mainline-alpine": 43,
    "httpd:2.4": 148,
    "httpd:2.4-alpine": 60,
    "httpd:latest": 148,
    "httpd:alpine": 60,
    "caddy:2": 45,
    "caddy:latest": 45,
    "python:3.9": 997,
    "python:3.9-slim": 125,
    "python:3.9-alpine": 48,
    "python:3.10": 1000,
    "python:3.10-slim": 128,
    "python:3.10-alpine": 50,
    "python:3.11": 1010,
    "python:3.11-slim": 155,
    "python:3.11-alpine": 52,
    "python:3.12": 1020,
    "python:3.12-slim": 130,
    "python:3.12-alpine": 57,
    "python:latest": 1020,
    "python:slim": 130,
    "python:alpine": 57,
    "ruby:3.2": 893,
    "ruby:3.2-slim": 196,
    "ruby:3.2-alpine": 80,
    "golang:1.21": 814,
    "golang:1.21-alpine": 220,
    "golang:1.22": 838,
    "golang:1.22-alpine": 230,
    "openjdk:17": 471,
    "openjdk:17-slim": 408,
    "ubuntu:22.04": 77,
    "ubuntu:latest": 77,
    "debian:bookworm": 117,
    "debian:bookworm-slim": 74,
    "debian:latest": 117,
    "alpine:3.18": 7,
    "alpine:3.19": 7,
    "alpine:latest": 7,
    "busybox:latest": 4,
}

VARIANT_SUFFIXES = ("bookworm-slim", "bullseye-slim", "buster-slim", "alpine", "slim")

REGISTRY_PREFIXES = ("docker.io/library/", "index.docker.io/library/", "docker.io/", "library/")


class Confidence(str, Enum):
    """How much a size figure can be trusted."""

    HIGH = "HIGH"
    LOW = "LOW"


@dataclass(frozen=True)
class SizeResult:
    """Answer of a size lookup."""

    estimated_bytes: int
    confidence: Confidence = Confidence.HIGH


class SizeLookup(Protocol):
    """Maps an image reference to an estimated size."""

    def lookup(self, reference: str) -> SizeResult:
        """
        Look up the size of an image.

        Raises:
            LookupUnavailableError: If no size can be given
        """
        ...


def split_reference(reference: str) -> Tuple[str, Optional[str], Optional[str]]:
    """
    Split an image reference into repository, tag and digest.

    A registry port (``localhost:5000/app``) is not mistaken for a tag.
    """
    digest = None
    if "@" in reference:
        reference, digest = reference.split("@", 1)

    colon = reference.rfind(":")
    if colon > reference.rfind("/"):
        return reference[:colon], reference[colon + 1 :], digest
    return reference, None, digest


def normalize_reference(reference: str) -> str:
    """Normalize an image reference: lower case, no Docker Hub prefix, explicit tag."""
    repository, tag, digest = split_reference(reference.strip().lower())

    for prefix in REGISTRY_PREFIXES:
        if repository.startswith(prefix):
            repository = repository[len(prefix) :]
            break

    if digest:
        return f"{repository}:{tag}@{digest}" if tag else f"{repository}@{digest}"
    return f"{repository}:{tag or 'latest'}"


def sibling_references(reference: str) -> List[str]:
    """
    Other variants of the same image tag, e.g. ``node:12`` -> ``node:12-alpine``.

    Digest-pinned references have no siblings.
    """
    normalized = normalize_reference(reference)
    repository, tag, digest = split_reference(normalized)
    if digest:
        return []

    core = tag
    for suffix in VARIANT_SUFFIXES:
        if tag == suffix:
            core = ""
            break
        if tag.endswith(f"-{suffix}"):
            core = tag[: -(len(suffix) + 1)]
            break

    if core in ("", "latest"):
        tags = ["alpine", "slim", "latest"]
    else:
        tags = [f"{core}-alpine", f"{core}-slim", core]

    return [f"{repository}:{t}" for t in tags if f"{repository}:{t}" != normalized]


class StaticSizeTable:
    """
    Size lookup backed by a table of known images.

    Attributes:
        sizes: Normalized image reference -> size in bytes
    """

    def __init__(self, sizes: Optional[Dict[str, int]] = None, include_defaults: bool = True):
        """
        Initialize the table.

        Args:
            sizes: Extra or overriding entries, in bytes
            include_defaults: Start from the built-in table of common images
        """
        self.sizes: Dict[str, int] = {}
        if include_defaults:
            for reference, size_mb in KNOWN_IMAGE_SIZES_MB.items():
                self.sizes[reference] = size_mb * MB
        for reference, size in (sizes or {}).items():
            self.sizes[normalize_reference(reference)] = size

    def __contains__(self, reference: str) -> bool:
        return normalize_reference(reference) in self.sizes

    def lookup(self, reference: str) -> SizeResult:
        key = normalize_reference(reference)
        if key not in self.sizes:
            raise LookupUnavailableError(reference, "not in size table")
        return SizeResult(self.sizes[key], Confidence.HIGH)


class DockerSizeLookup:
    """
    Size lookup that asks the local Docker daemon.

    Attributes:
        client: Docker client instance
        pull: Pull images that are not available locally
    """

    def __init__(self, pull: bool = False):
        """Connect to the Docker daemon."""
        try:
            self.client = docker.from_env()
            logger.debug("Connected to Docker daemon")
        except docker.errors.DockerException as e:
            logger.error(f"Failed to connect to Docker: {e}")
            raise ConnectionError(f"Cannot connect to Docker daemon: {e}")
        self.pull = pull

    def lookup(self, reference: str) -> SizeResult:
        try:
            image = self.client.images.get(reference)
        except docker.errors.ImageNotFound:
            if not self.pull:
                raise LookupUnavailableError(reference, "image not available locally")
            image = self._pull(reference)
        except docker.errors.APIError as e:
            raise LookupUnavailableError(reference, f"Docker API error: {e}")

        return SizeResult(int(image.attrs.get("Size", 0)), Confidence.HIGH)

    def _pull(self, reference: str):
        try:
            logger.info(f"Pulling image: {reference}")
            image = self.client.images.pull(reference)
            logger.info(f"Successfully pulled {reference}")
            return image
        except docker.errors.DockerException as e:
            raise LookupUnavailableError(reference, f"pull failed: {e}")


class ChainedSizeLookup:
    """Try several lookups in order and return the first answer."""

    def __init__(self, lookups: Sequence[SizeLookup]):
        self.lookups = list(lookups)

    def lookup(self, reference: str) -> SizeResult:
        reasons = []
        for lookup in self.lookups:
            try:
                return lookup.lookup(reference)
            except LookupUnavailableError as e:
                reasons.append(e.reason)
        raise LookupUnavailableError(reference, "; ".join(reasons) or "no lookups configured")


class CachedSizeLookup:
    """
    Thread-safe memoizing wrapper around another lookup.

    Each normalized reference is looked up at most once, failures included.
    Concurrent callers asking for the same reference wait for the first
    caller's answer instead of repeating the lookup.
    """

    def __init__(self, lookup: SizeLookup):
        self._lookup = lookup
        self._lock = threading.Lock()
        self._entries: Dict[str, Future] = {}

    def size(self) -> int:
        """Number of cached references."""
        with self._lock:
            return len(self._entries)

    def lookup(self, reference: str) -> SizeResult:
        key = normalize_reference(reference)

        with self._lock:
            entry = self._entries.get(key)
            owner = entry is None
            if owner:
                entry = Future()
                self._entries[key] = entry

        if owner:
            try:
                entry.set_result(self._lookup.lookup(reference))
            except Exception as e:
                entry.set_exception(e)
            except BaseException as e:
                # Interrupted lookups are not cached
                with self._lock:
                    self._entries.pop(key, None)
                entry.set_exception(e)
                raise

        return entry.result()

    def clear(self) -> None:
        """Forget all cached answers."""
        with self._lock:
            self._entries.clear()


def try_lookup(lookup: SizeLookup, reference: str) -> Optional[SizeResult]:
    """
    Look up an image size, returning None instead of failing.

    Any error from the lookup is logged and treated as "unavailable".
    """
    try:
        result = lookup.lookup(reference)
    except LookupUnavailableError as e:
        logger.info(str(e))
        return None
    except Exception as e:
        logger.warning(f"Size lookup for {reference} failed: {e}")
        return None

    if result.estimated_bytes < 0:
        logger.warning(f"Size lookup for {reference} returned a negative size; ignoring it")
        return None
    return result


class SizeEstimator:
    """
    Assign a size estimate to every layer of a stage graph.

    Base layers are sized through the injected lookup; RUN and COPY layers
    use a coarse heuristic driven by the caller's hints. Estimation never
    fails: anything unknown gets a configured default and is flagged
    low-confidence.
    """

    def __init__(
        self,
        lookup: SizeLookup,
        config: Optional[PlannerConfig] = None,
        hints: Optional[SizeHints] = None,
    ):
        self.lookup = lookup
        self.config = config or PlannerConfig()
        self.hints = hints or SizeHints()

    def estimate(self, graph: StageGraph) -> EstimatedBuild:
        """
        Estimate layer sizes for a stage graph.

        Args:
            graph: Parsed stage graph

        Returns:
            EstimatedBuild with every layer sized
        """
        sized: List[Layer] = []
        totals: Dict[str, Tuple[int, bool]] = {}

        for layer in materialize_layers(graph):
            size, low = self._estimate_layer(graph, layer, totals)
            sized.append(replace(layer, size_bytes=size, low_confidence=low))

            total, any_low = totals.get(layer.stage, (0, False))
            totals[layer.stage] = (total + size, any_low or low)

        build = EstimatedBuild(graph=graph, layers=tuple(sized))
        logger.debug(f"Estimated {len(sized)} layer(s); final image ~{build.final_size()} bytes")
        return build

    def _estimate_layer(
        self, graph: StageGraph, layer: Layer, totals: Dict[str, Tuple[int, bool]]
    ) -> Tuple[int, bool]:
        config = self.config
        hints = self.hints
        instruction = layer.instruction

        if layer.provenance == LayerProvenance.BASE_IMAGE:
            stage = graph.stage(layer.stage)
            if stage.base_stage is not None:
                return totals.get(stage.base_stage, (0, True))
            if stage.base_image.lower() == "scratch":
                return 0, False
            return self._estimate_base(stage.base_image)

        if layer.provenance == LayerProvenance.DEPENDENCY_INSTALL:
            if not instruction.installs_dependencies:
                return config.default_run_bytes, True
            if hints.dependency_bytes is not None:
                return int(hints.dependency_bytes * config.install_scale), False
            return config.default_install_bytes, True

        if layer.provenance == LayerProvenance.ARTIFACT_COPY:
            if hints.artifact_bytes is not None:
                return hints.artifact_bytes, False
            return config.default_artifact_bytes, True

        if instruction.copies_whole_context:
            if hints.context_bytes is not None:
                return hints.context_bytes, False
            return config.default_context_bytes, True

        return config.default_copy_bytes, True

    def _estimate_base(self, reference: str) -> Tuple[int, bool]:
        result = try_lookup(self.lookup, reference)
        if result is None:
            logger.info(f"Using default size estimate for {reference}")
            return self.config.default_base_bytes, True
        return result.estimated_bytes, result.confidence == Confidence.LOW
