
from signflow.domain.attachment import Attachment
from signflow.repositories.base import BaseRepository


class AttachmentRepository(BaseRepository[Attachment]):
    model = Attachment

    async def list_by_workflow(self, workflow_id: str) -> list[Attachment]:
        result = await self._session.execute(
            self._base_query()
            .where(Attachment.workflow_id == workflow_id)
            .order_by(Attachment.created_at.asc())
        )
        return list(result.scalars().all())
