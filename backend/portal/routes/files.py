from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..responses import envelope
from ..serializers import file_out
from ..services import FileService

router = APIRouter()


@router.post("/upload", status_code=201)
def upload_file(
    file: UploadFile = File(...),
    owner: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    stored = FileService(db).upload(owner, file)
    return envelope(file_out(stored), message="File uploaded")


@router.get("/{file_id}")
def download_file(file_id: str, _: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    stored = FileService(db).get(file_id)
    return FileResponse(stored.path, media_type=stored.content_type, filename=stored.filename)


@router.delete("/{file_id}")
def delete_file(file_id: str, actor: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    FileService(db).delete(actor, file_id)
    return envelope(message="File deleted")
