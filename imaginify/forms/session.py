import logging
import time
import uuid
from enum import Enum
from typing import Callable, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from imaginify.actions.images import add_image, update_image
from imaginify.actions.users import update_credits
from imaginify.billing.plans import CREDIT_FEE, insufficient_credits
from imaginify.errors import AppError, NotFoundError, UnauthorizedError, ValidationFailure
from imaginify.forms.debounce import CoalescingTimer
from imaginify.models.image import Image
from imaginify.models.schemas import ImageCreate, ImageUpdate, UploadedAsset
from imaginify.services.cloudinary_service import CloudinaryService
from imaginify.transformations.constants import (
    ASPECT_RATIO_OPTIONS,
    DEFAULT_FORM_VALUES,
    TransformationType,
)
from imaginify.transformations.configs import (
    base_config,
    field_edit,
    merge_config,
    parse_config,
    transformation_type,
)

logger = logging.getLogger(__name__)


class FormAction(str, Enum):
    ADD = "Add"
    UPDATE = "Update"


class FormValues(BaseModel):
    title: str
    aspect_ratio: Optional[str] = None
    color: Optional[str] = None
    prompt: Optional[str] = None
    public_id: str


class FormImage(BaseModel):
    public_id: str
    secure_url: str
    width: int = 0
    height: int = 0
    aspect_ratio: Optional[str] = None


class TransformationFormSession:
    """Uploaded image, form values and the pending and committed configurations of one form."""

    def __init__(
        self,
        user_id: int,
        type_,
        credit_balance: int,
        action=FormAction.ADD,
        data: Optional[Image] = None,
        debounce_seconds: float = 1.0,
        credit_fee: int = CREDIT_FEE,
    ):
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self.type = transformation_type(type_)
        self.action = FormAction(action)
        self.credit_balance = credit_balance
        self.credit_fee = credit_fee

        if self.action is FormAction.UPDATE and data is None:
            raise ValidationFailure("Updating a transformation needs the existing image")

        self.image_id: Optional[int] = data.id if data is not None else None
        self.image: Optional[FormImage] = None
        self.values = FormValues(**DEFAULT_FORM_VALUES)
        self.committed = None
        self.transformation_url: Optional[str] = None
        if data is not None:
            self._load(data)

        self.pending = None
        self.is_transforming = False
        # Credits debited since the last successful save
        self.charged = 0
        self._staged = None
        self._timer = CoalescingTimer(debounce_seconds, self._commit_staged)

    def _load(self, data: Image):
        self.image = FormImage(
            public_id=data.public_id,
            secure_url=data.secure_url,
            width=data.width or 0,
            height=data.height or 0,
            aspect_ratio=data.aspect_ratio,
        )
        self.values = FormValues(
            title=data.title,
            aspect_ratio=data.aspect_ratio,
            color=data.color,
            prompt=data.prompt,
            public_id=data.public_id,
        )
        self.committed = parse_config(self.type, data.config)
        self.transformation_url = data.transformation_url

    @property
    def insufficient_credits(self) -> bool:
        return insufficient_credits(self.credit_balance, self.credit_fee)

    @property
    def has_staged_edits(self) -> bool:
        return self._timer.pending

    def set_image(self, asset: UploadedAsset):
        """Take the media uploader's result as the form's image."""
        self.image = FormImage(**asset.model_dump())
        self.values.public_id = asset.public_id
        if self.type in (TransformationType.RESTORE, TransformationType.REMOVE_BACKGROUND):
            self.pending = base_config(self.type)

    def select_aspect_ratio(self, key: str):
        if self.type is not TransformationType.FILL:
            raise ValidationFailure("Aspect ratio only applies to generative fill")
        option = ASPECT_RATIO_OPTIONS.get(key)
        if option is None:
            raise ValidationFailure(f"Unknown aspect ratio: {key}")

        if self.image is not None:
            self.image.aspect_ratio = option["aspect_ratio"]
            self.image.width = option["width"]
            self.image.height = option["height"]
        self.values.aspect_ratio = key
        self.pending = base_config(self.type)

    def change_input(self, field_name: str, value: str):
        """Record a keystroke in the prompt or color field.

        The form value changes at once; the pending configuration only
        changes when the coalescing timer fires.
        """
        edit = field_edit(self.type, field_name, value)
        setattr(self.values, field_name, value)
        self._staged = merge_config(self._staged, edit)
        self._timer.touch()

    def update_fields(self, changes: Dict[str, Optional[str]]):
        for field_name, value in changes.items():
            if value is None:
                continue
            if field_name == "title":
                self.values.title = value
            elif field_name == "aspect_ratio":
                self.select_aspect_ratio(value)
            elif field_name in ("prompt", "color"):
                self.change_input(field_name, value)
            else:
                raise ValidationFailure(f"Unknown form field: {field_name}")

    def _commit_staged(self):
        if self._staged is None:
            return
        self.pending = merge_config(self.pending, self._staged)
        self._staged = None
        logger.debug(f"Form {self.id}: pending config now {self.pending.to_config()}")

    def build_url(self, cloudinary: CloudinaryService) -> str:
        return cloudinary.build_transformation_url(
            self.image.public_id, self.committed, self.image.width, self.image.height
        )

    def apply(self, db: Session, cloudinary: CloudinaryService) -> str:
        """Commit the pending configuration and debit the credit fee.

        The debit is attempted after the derived URL is built and is not
        checked against the balance first.
        """
        self._timer.flush()
        if self.image is None:
            raise ValidationFailure("Upload an image before applying a transformation")
        if self.pending is None:
            raise ValidationFailure("There is no pending transformation to apply")

        self.is_transforming = True
        try:
            self.committed = merge_config(self.committed, self.pending)
            self.pending = None
            self.transformation_url = self.build_url(cloudinary)

            user = update_credits(db, self.user_id, self.credit_fee)
            self.credit_balance = user.credit_balance
            self.charged += -self.credit_fee
        finally:
            self.is_transforming = False

        logger.info(f"Form {self.id}: applied {self.type.value} for user {self.user_id}")
        return self.transformation_url

    def _image_payload(self) -> dict:
        return dict(
            title=self.values.title,
            public_id=self.image.public_id,
            transformation_type=self.type.value,
            width=self.image.width,
            height=self.image.height,
            config=self.committed.to_config() if self.committed is not None else None,
            secure_url=self.image.secure_url,
            transformation_url=self.transformation_url,
            aspect_ratio=self.values.aspect_ratio or "",
            prompt=self.values.prompt or "",
            color=self.values.color or "",
        )

    def submit(self, db: Session, cloudinary: CloudinaryService, values: Optional[dict] = None) -> Image:
        """Save the form as a new image (Add) or onto the existing one (Update).

        Only the title can change here; prompt, color and aspect ratio feed
        the configuration and go through ``update_fields`` and ``apply``.
        If the save fails, credits charged since the last save are refunded
        before the error propagates.
        """
        if values:
            extra = sorted(set(values) - {"title"})
            if extra:
                raise ValidationFailure(f"Only the title can change on save, got: {', '.join(extra)}")
            if values.get("title") is not None:
                self.values.title = values["title"]
        if self.image is None:
            raise ValidationFailure("Upload an image before saving")
        if self.committed is not None:
            self.transformation_url = self.build_url(cloudinary)

        payload = self._image_payload()
        try:
            if self.action is FormAction.ADD:
                record = add_image(db, ImageCreate(**payload), self.user_id)
            else:
                record = update_image(db, self.image_id, ImageUpdate(**payload), self.user_id)
        except AppError:
            self._refund(db)
            raise

        self.charged = 0
        if self.action is FormAction.ADD:
            self.reset()
        return record

    def _refund(self, db: Session):
        if not self.charged:
            return
        refund = self.charged
        try:
            user = update_credits(db, self.user_id, refund)
        except AppError as e:
            logger.error(f"Form {self.id}: refund of {refund} credits to user {self.user_id} failed: {e.message}")
            return
        self.credit_balance = user.credit_balance
        self.charged = 0
        logger.warning(f"Form {self.id}: save failed, refunded {refund} credits to user {self.user_id}")

    def reset(self):
        self._timer.cancel()
        self._staged = None
        self.image = None
        self.values = FormValues(**DEFAULT_FORM_VALUES)
        self.pending = None
        self.committed = None
        self.transformation_url = None

    def close(self):
        self._timer.cancel()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action.value,
            "type": self.type.value,
            "image_id": self.image_id,
            "image": self.image.model_dump() if self.image is not None else None,
            "values": self.values.model_dump(),
            "pending": self.pending.to_config() if self.pending is not None else None,
            "committed": self.committed.to_config() if self.committed is not None else None,
            "transformation_url": self.transformation_url,
            "credit_balance": self.credit_balance,
            "insufficient_credits": self.insufficient_credits,
            "has_staged_edits": self.has_staged_edits,
            "is_transforming": self.is_transforming,
            "charged": self.charged,
        }


class FormSessionRegistry:
    """In-memory form sessions, keyed by id and owned by one user each.

    Sessions not looked up for ``ttl_seconds`` are evicted the next time a
    session is created or fetched.
    """

    def __init__(
        self,
        debounce_seconds: float = 1.0,
        credit_fee: int = CREDIT_FEE,
        ttl_seconds: float = 1800,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.debounce_seconds = debounce_seconds
        self.credit_fee = credit_fee
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: Dict[str, TransformationFormSession] = {}
        self._last_touched: Dict[str, float] = {}

    def __len__(self):
        return len(self._sessions)

    def _evict_idle(self, now: float):
        idle = [sid for sid, touched in self._last_touched.items() if now - touched >= self.ttl_seconds]
        for sid in idle:
            self._drop(sid)
        if idle:
            logger.info(f"Evicted {len(idle)} idle form session(s)")

    def _drop(self, session_id: str):
        self._sessions.pop(session_id).close()
        del self._last_touched[session_id]

    def create(self, user_id: int, type_, credit_balance: int, action=FormAction.ADD, data: Optional[Image] = None):
        now = self.clock()
        self._evict_idle(now)
        session = TransformationFormSession(
            user_id,
            type_,
            credit_balance,
            action=action,
            data=data,
            debounce_seconds=self.debounce_seconds,
            credit_fee=self.credit_fee,
        )
        self._sessions[session.id] = session
        self._last_touched[session.id] = now
        return session

    def get(self, session_id: str, user_id: int) -> TransformationFormSession:
        now = self.clock()
        self._evict_idle(now)
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Form session not found")
        if session.user_id != user_id:
            raise UnauthorizedError("Form session belongs to another user")
        self._last_touched[session_id] = now
        return session

    def discard(self, session_id: str, user_id: int):
        self.get(session_id, user_id)
        self._drop(session_id)

    def close(self):
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
        self._last_touched.clear()
