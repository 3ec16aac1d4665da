from __future__ import annotations

_ORDER_SINK: list[str] | None = None
_CONSTRUCTIONS: dict[str, int] = {}


def set_order_sink(sink: list[str] | None) -> None:
    global _ORDER_SINK
    _ORDER_SINK = sink


def append_order(value: str) -> None:
    if _ORDER_SINK is not None:
        _ORDER_SINK.append(value)


def record_construction(name: str) -> None:
    _CONSTRUCTIONS[name] = _CONSTRUCTIONS.get(name, 0) + 1


def construction_count(name: str) -> int:
    return _CONSTRUCTIONS.get(name, 0)


def reset_constructions() -> None:
    _CONSTRUCTIONS.clear()
