"""Named parameter layouts describing the per-source parameter vector."""

from collections.abc import Iterable, Mapping


class ParamLayout:
    """Ordered named blocks of a single source's parameter vector.

    A layout tags gradients and Hessians so that quantities computed with
    respect to different parameterizations are never combined.

    Parameters
    ----------
    name : str
        Tag identifying the parameterization (e.g. ``"canonical"``).
    ids : mapping or iterable of (str, int)
        Parameter ids and their lengths, in storage order.

    Example
    -------
    >>> layout = ParamLayout("canonical", {"u": 2, "e_dev": 1, "a": 2})
    >>> layout.size
    5
    >>> layout.index("a")
    slice(3, 5, None)
    """

    def __init__(self, name: str, ids: Mapping[str, int] | Iterable[tuple[str, int]]):
        items = list(ids.items()) if isinstance(ids, Mapping) else list(ids)
        if not items:
            raise ValueError("A parameter layout needs at least one id")

        self.name = name
        self._lengths: dict[str, int] = {}
        self._offsets: dict[str, int] = {}
        offset = 0
        for param_id, length in items:
            if param_id in self._lengths:
                raise ValueError(f"Duplicate parameter id {param_id!r} in layout {name!r}")
            if length < 1:
                raise ValueError(f"Parameter {param_id!r} must have a positive length, got {length}")
            self._lengths[param_id] = int(length)
            self._offsets[param_id] = offset
            offset += int(length)
        self.size = offset

    @property
    def ids(self) -> list[str]:
        return list(self._lengths)

    def length(self, param_id: str) -> int:
        return self._lengths[param_id]

    def index(self, param_id: str) -> slice:
        """Slice of ``param_id`` within one source's block."""
        start = self._offsets[param_id]
        return slice(start, start + self._lengths[param_id])

    def renamed(self, name: str) -> "ParamLayout":
        """Same ids under a different tag."""
        return ParamLayout(name, self._lengths)

    def __contains__(self, param_id) -> bool:
        return param_id in self._lengths

    def __eq__(self, other) -> bool:
        if not isinstance(other, ParamLayout):
            return NotImplemented
        return self.name == other.name and list(self._lengths.items()) == list(
            other._lengths.items()
        )

    def __hash__(self) -> int:
        return hash((self.name, tuple(self._lengths.items())))

    def __repr__(self) -> str:
        return f"ParamLayout({self.name!r}, {self._lengths})"
