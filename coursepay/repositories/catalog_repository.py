from typing import Dict, Iterable, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.models.course import Course, CourseAttachment, DOWNLOADABLE_ATTACHMENTS


class CatalogRepository:
    """Reads the local projection of the catalog service."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_courses(self, course_ids: Iterable[str]) -> Dict[str, Course]:
        ids = set(course_ids)
        if not ids:
            return {}
        result = await self.session.exec(select(Course).where(Course.id.in_(ids)))
        return {course.id: course for course in result.all()}

    async def downloadable_attachments(self, course_ids: Iterable[str]) -> List[CourseAttachment]:
        ids = set(course_ids)
        if not ids:
            return []
        result = await self.session.exec(
            select(CourseAttachment)
            .where(CourseAttachment.course_id.in_(ids))
            .where(CourseAttachment.is_revoked == False)  # noqa: E712
            .where(CourseAttachment.attachment_type.in_(DOWNLOADABLE_ATTACHMENTS))
            .order_by(CourseAttachment.created_at)
        )
        return list(result.all())

    async def get_attachment(self, attachment_id: str):
        return await self.session.get(CourseAttachment, attachment_id)
