"""Lookup of request templates across loaded collections."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from waveflow.models import Collection, CollectionItem, RequestTemplate


@dataclass(frozen=True)
class RequestLookup:
    item: CollectionItem
    request: RequestTemplate
    collection: Collection


def _walk(items: Iterable[CollectionItem]) -> Iterator[CollectionItem]:
    for item in items:
        yield item
        if item.item:
            yield from _walk(item.item)


class RequestCatalog:
    """Finds requests by ``"<collectionFile>:<itemId>"`` or a bare item id."""

    def __init__(self, collections: Iterable[Collection] = ()) -> None:
        self.collections = list(collections)

    def find(self, reference_id: str) -> RequestLookup | None:
        filename, sep, item_id = reference_id.partition(":")
        if sep:
            candidates = [c for c in self.collections if c.filename == filename]
        else:
            item_id = reference_id
            candidates = self.collections
        for collection in candidates:
            for item in _walk(collection.item):
                if item.id == item_id and item.request is not None:
                    return RequestLookup(item, item.request, collection)
        return None

    def all_requests(self) -> list[RequestLookup]:
        return [
            RequestLookup(item, item.request, collection)
            for collection in self.collections
            for item in _walk(collection.item)
            if item.request is not None
        ]
