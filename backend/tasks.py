"""
Task CRUD scoped to the owning user.

A task owned by someone else is reported exactly like a missing one, so
callers cannot tell other users' task ids from unknown ones.
"""
import logging
from typing import List, Optional

from attachments import AttachmentStorage, AttachmentUpload
from database import DocumentStore
from errors import NotFoundError
from schemas import Document, Task, now_ms

logger = logging.getLogger(__name__)


def _find_owned(doc: Document, user_id: str, task_id: str) -> int:
    for idx, task in enumerate(doc.tasks):
        if task.id == task_id and task.user_id == user_id:
            return idx
    raise NotFoundError("not found")


class TaskRepository:
    def __init__(self, store: DocumentStore, attachments: AttachmentStorage):
        self._store = store
        self._attachments = attachments

    def list_tasks(self, user_id: str) -> List[Task]:
        """All of the user's tasks in insertion order"""
        doc = self._store.read()
        return [t for t in doc.tasks if t.user_id == user_id]

    def create_task(
        self,
        user_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        attachment: Optional[AttachmentUpload] = None,
    ) -> Task:
        stored = None
        if attachment is not None:
            stored = self._attachments.store(user_id, attachment)

        task = Task(
            user_id=user_id,
            title=title or "",
            description=description or "",
            attachment=stored.url if stored else None,
            attachment_name=stored.original_name if stored else None,
        )
        try:
            with self._store.transaction() as doc:
                doc.tasks.append(task)
        except Exception:
            if stored is not None:
                self._attachments.discard(stored)
            raise

        logger.info("Created task %s for user %s", task.id, user_id)
        return task

    def update_task(
        self,
        user_id: str,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Task:
        """
        Update the given fields of an owned task

        ``None`` leaves a field untouched while ``""`` clears it. The update
        timestamp moves even when nothing else changes.

        Raises:
            NotFoundError: No such task for this user
        """
        with self._store.transaction() as doc:
            task = doc.tasks[_find_owned(doc, user_id, task_id)]
            if title is not None:
                task.title = title
            if description is not None:
                task.description = description
            task.updated_at = now_ms()

        logger.info("Updated task %s for user %s", task_id, user_id)
        return task

    def delete_task(self, user_id: str, task_id: str) -> Task:
        """Remove an owned task and return it"""
        with self._store.transaction() as doc:
            deleted = doc.tasks.pop(_find_owned(doc, user_id, task_id))

        logger.info("Deleted task %s for user %s", task_id, user_id)
        return deleted
