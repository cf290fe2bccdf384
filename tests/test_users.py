import json

import pytest

from app.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models.audit_log import AuditAction, EntityType
from app.models.user import UserRole
from app.services import audit
from app.services.users import get_user, set_user_active


def test_admin_deactivates_and_reactivates(db, actors):
    admin = actors[UserRole.ADMIN]
    client_id = actors[UserRole.CLIENT].id

    assert set_user_active(db, client_id, False, admin).is_active is False
    assert set_user_active(db, client_id, True, admin).is_active is True

    history = audit.get_entity_history(db, EntityType.USER, client_id)
    assert [e.action for e in history] == [AuditAction.STATUS_CHANGE, AuditAction.STATUS_CHANGE]
    assert json.loads(history[0].changes)["after"] == {"is_active": True}
    assert all(e.performed_by == admin.id for e in history)


def test_admin_cannot_deactivate_self(db, actors):
    admin = actors[UserRole.ADMIN]
    with pytest.raises(ValidationError) as exc:
        set_user_active(db, admin.id, False, admin)
    assert exc.value.fields == ["is_active"]
    assert get_user(db, admin.id).is_active is True


def test_unchanged_status_writes_no_entry(db, actors):
    set_user_active(db, actors[UserRole.CLIENT].id, True, actors[UserRole.ADMIN])
    assert audit.get_entity_history(db, EntityType.USER, actors[UserRole.CLIENT].id) == []


def test_non_admin_is_refused(db, actors):
    with pytest.raises(ForbiddenError):
        set_user_active(db, actors[UserRole.CLIENT].id, False, actors[UserRole.PROCUREMENT_MANAGER])


def test_unknown_user(db, actors):
    with pytest.raises(NotFoundError):
        set_user_active(db, 4040, False, actors[UserRole.ADMIN])
