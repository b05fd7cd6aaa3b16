"""Uploaded documents kept on local disk under `UPLOAD_DIR`."""

import logging
from pathlib import Path

from fastapi import UploadFile
from sqlmodel import Session

from .. import models, repositories
from ..config import settings
from ..errors import InvalidArgument, NotFound
from ..policies import authorize
from ..utils.uploads import sniff_upload_kind, store_payload, validate_upload_filename

logger = logging.getLogger("portal.api")


class FileService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.FileRepository(session)

    def upload(self, owner: models.User, upload: UploadFile) -> models.StoredFile:
        validate_upload_filename(upload.filename)
        payload = upload.file.read(settings.MAX_UPLOAD_BYTES + 1)
        if len(payload) > settings.MAX_UPLOAD_BYTES:
            raise InvalidArgument("File too large")
        if not payload:
            raise InvalidArgument("Empty file")
        sniff_upload_kind(payload, upload.content_type)
        file_id, path = store_payload(settings.UPLOAD_DIR, payload, upload.filename)
        stored = models.StoredFile(
            id=file_id,
            owner_id=owner.id,
            filename=upload.filename,
            content_type=upload.content_type,
            size=len(payload),
            path=str(path),
        )
        self.repo.save(stored)
        logger.info("file %s uploaded by %s (%d bytes)", file_id, owner.id, len(payload))
        return stored

    def get(self, file_id: str) -> models.StoredFile:
        stored = self.repo.get(file_id)
        if stored is None or not Path(stored.path).exists():
            raise NotFound("File not found")
        return stored

    def delete(self, actor: models.User, file_id: str) -> None:
        stored = self.repo.get(file_id)
        if stored is None:
            raise NotFound("File not found")
        authorize(actor, "delete", "file", stored)
        Path(stored.path).unlink(missing_ok=True)
        self.repo.delete(stored)
