from fastapi import APIRouter, BackgroundTasks

from notifications import NotifierDep
from schemas import ContactMessage

router = APIRouter(tags=["contact"])


@router.post("", status_code=202)
def contact(
    payload: ContactMessage,
    notifier: NotifierDep,
    background_tasks: BackgroundTasks,
):
    """Forward a contact-form message to the operator mailbox."""
    background_tasks.add_task(
        notifier.send_contact, payload.name, payload.email, payload.message
    )
    return {"message": "Message received"}
