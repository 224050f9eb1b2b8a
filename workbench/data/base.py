from typing import Any, Protocol

ENTITY_KINDS = ("todo", "project", "event", "personal")


class DataStore(Protocol):
    """Mutation/read interface over the personal data store.

    Rows are plain dicts. `entity` is one of ENTITY_KINDS. Implementations
    raise MutationError when a write is rejected (unknown id, constraint).
    """

    async def get(self, entity: str, item_id: str) -> dict[str, Any] | None: ...

    async def list_all(self, entity: str) -> list[dict[str, Any]]: ...

    async def create(self, entity: str, fields: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, entity: str, item_id: str, fields: dict[str, Any]) -> dict[str, Any]: ...

    async def delete(self, entity: str, item_id: str) -> None: ...

    async def snapshot(self) -> dict[str, Any]: ...
