from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from agenda.auth.context import ROLE_ADMIN, ROLE_CLIENT, ROLE_PROFESSIONAL, TenantContext
from agenda.auth.dependencies import get_tenant_context
from agenda.auth.jwt_handler import create_access_token
from agenda.core import config


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_get_tenant_context_reads_claims_from_token() -> None:
    token = create_access_token('pro-1', 'clinic-a', 'Professional')

    context = get_tenant_context(_credentials(token))

    assert context == TenantContext(user_id='pro-1', tenant_id='clinic-a', role=ROLE_PROFESSIONAL)


def test_get_tenant_context_rejects_bad_signature() -> None:
    token = jwt.encode({'sub': 'pro-1', 'tenant_id': 'clinic-a', 'role': 'owner'}, 'other-secret', algorithm='HS256')

    with pytest.raises(HTTPException) as exception_info:
        get_tenant_context(_credentials(token))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_tenant_context_rejects_expired_token() -> None:
    token = jwt.encode(
        {
            'sub': 'pro-1',
            'tenant_id': 'clinic-a',
            'role': 'owner',
            'exp': datetime.now(timezone.utc) - timedelta(minutes=1),
        },
        config.JWT_SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
    )

    with pytest.raises(HTTPException) as exception_info:
        get_tenant_context(_credentials(token))

    assert exception_info.value.detail == 'Invalid token'


def test_get_tenant_context_requires_tenant_claims() -> None:
    token = jwt.encode({'sub': 'pro-1', 'role': 'owner'}, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        get_tenant_context(_credentials(token))

    assert exception_info.value.detail == 'Token is missing tenant claims'


def test_get_tenant_context_requires_subject() -> None:
    token = jwt.encode({'tenant_id': 'clinic-a', 'role': 'owner'}, config.JWT_SECRET_KEY,
                       algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        get_tenant_context(_credentials(token))

    assert exception_info.value.detail == 'Invalid token subject'


def test_professionals_manage_only_their_own_schedule() -> None:
    professional = TenantContext(user_id='pro-1', tenant_id='clinic-a', role=ROLE_PROFESSIONAL)
    admin = TenantContext(user_id='admin-1', tenant_id='clinic-a', role=ROLE_ADMIN)
    client = TenantContext(user_id='pro-1', tenant_id='clinic-a', role=ROLE_CLIENT)

    assert professional.can_manage_professional('pro-1') is True
    assert professional.can_manage_professional('pro-2') is False
    assert admin.can_manage_professional('pro-2') is True
    assert client.can_manage_professional('pro-1') is False
