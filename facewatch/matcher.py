from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

from .config import MATCH_DISTANCE_THRESHOLD
from .exceptions import FaceWatchError
from .face_types import UNKNOWN_LABEL


@dataclass(frozen=True)
class LabeledDescriptor:
    label: str
    descriptor: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        vector = np.array(self.descriptor, dtype=np.float32).reshape(-1)
        vector.setflags(write=False)
        object.__setattr__(self, "descriptor", vector)


@dataclass(frozen=True)
class FaceMatch:
    label: str
    distance: float

    @property
    def is_unknown(self) -> bool:
        return self.label == UNKNOWN_LABEL

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


class FaceMatcher:
    """Nearest-neighbour matcher over a fixed set of labeled descriptors.

    Built once; a query is assigned the label of the closest stored
    descriptor when its Euclidean distance is below ``distance_threshold``.
    Ties resolve to the earliest descriptor in load order.
    """

    def __init__(
        self,
        labeled_descriptors: Sequence[LabeledDescriptor],
        distance_threshold: float = MATCH_DISTANCE_THRESHOLD,
    ):
        if not labeled_descriptors:
            raise FaceWatchError("FaceMatcher requires at least one labeled descriptor.")

        lengths = {item.descriptor.shape[0] for item in labeled_descriptors}
        if len(lengths) != 1:
            raise FaceWatchError(f"Descriptor lengths differ: {sorted(lengths)}")

        self.distance_threshold = float(distance_threshold)
        self._labels: List[str] = [item.label for item in labeled_descriptors]
        matrix = np.vstack([item.descriptor for item in labeled_descriptors]).astype(np.float32)
        matrix.setflags(write=False)
        self._matrix = matrix

    @property
    def descriptor_size(self) -> int:
        return int(self._matrix.shape[1])

    def __len__(self) -> int:
        return len(self._labels)

    def distances(self, query: np.ndarray) -> np.ndarray:
        query = np.asarray(query, dtype=np.float32).reshape(-1)
        if query.shape[0] != self.descriptor_size:
            raise FaceWatchError(
                f"Query descriptor has {query.shape[0]} values, expected {self.descriptor_size}."
            )
        return np.linalg.norm(self._matrix - query, axis=1)

    def find_best_match(self, query: np.ndarray) -> FaceMatch:
        distances = self.distances(query)
        # argmin returns the first index on ties, which keeps load order.
        idx = int(np.argmin(distances))
        best = float(distances[idx])
        if best < self.distance_threshold:
            return FaceMatch(label=self._labels[idx], distance=best)
        return FaceMatch(label=UNKNOWN_LABEL, distance=best)
