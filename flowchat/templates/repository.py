"""Template repository: named system prompts that rooms can start from."""

from datetime import UTC, datetime
from uuid import uuid4

from flowchat.db.connection import Database
from flowchat.models import Template


def _row_to_template(row) -> Template:
    return Template(
        id=row["id"],
        name=row["name"],
        system_prompt=row["system_prompt"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class TemplateRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, name: str, system_prompt: str) -> Template:
        template_id = str(uuid4())
        now = datetime.now(UTC).isoformat()
        async with self._db.transaction(checkpoint=True) as tx:
            await tx.execute(
                "INSERT INTO templates (id, name, system_prompt, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (template_id, name, system_prompt, now, now),
            )
        return Template(
            id=template_id, name=name, system_prompt=system_prompt,
            created_at=now, updated_at=now,
        )

    async def get_by_id(self, template_id: str) -> Template:
        row = await self._db.fetchone("SELECT * FROM templates WHERE id = ?", (template_id,))
        if row is None:
            raise TemplateNotFoundError(template_id)
        return _row_to_template(row)

    async def get_all(self) -> list[Template]:
        rows = await self._db.fetchall("SELECT * FROM templates ORDER BY name, rowid")
        return [_row_to_template(r) for r in rows]

    async def update(
        self, template_id: str, *, name: str | None = None, system_prompt: str | None = None,
    ) -> Template:
        """Update the given fields. None means leave unchanged."""
        changes = {k: v for k, v in (("name", name), ("system_prompt", system_prompt)) if v is not None}
        if changes:
            assignments = ", ".join(f"{k} = ?" for k in changes)
            async with self._db.transaction(checkpoint=True) as tx:
                cursor = await tx.execute(
                    f"UPDATE templates SET {assignments}, updated_at = ? WHERE id = ?",
                    (*changes.values(), datetime.now(UTC).isoformat(), template_id),
                )
                if cursor.rowcount == 0:
                    raise TemplateNotFoundError(template_id)
        return await self.get_by_id(template_id)

    async def destroy(self, template_id: str) -> None:
        """Delete a template. Rooms created from it keep running with template_id NULL."""
        async with self._db.transaction(checkpoint=True) as tx:
            cursor = await tx.execute("DELETE FROM templates WHERE id = ?", (template_id,))
            if cursor.rowcount == 0:
                raise TemplateNotFoundError(template_id)


class TemplateNotFoundError(Exception):
    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")
