"""
Identity Gate and the role policy table.
"""

from datetime import timedelta

import pytest
from jose import jwt

from fleetcore.core.config import settings
from fleetcore.core.exceptions import Forbidden, Unauthenticated
from fleetcore.core.guards import Operation, enforce, is_permitted
from fleetcore.core.jwt import caller_id_from_token, create_access_token
from fleetcore.models.enums import UserRole
from fleetcore.services.identity import Actor, IdentityGate


@pytest.mark.asyncio
async def test_authorize_resolves_tenant_and_role(db_session, factory):
    tenant = await factory.tenant()
    manager = await factory.user(tenant, UserRole.MANAGER)

    actor = await IdentityGate.authorize(db_session, manager.id)

    assert actor == Actor(user_id=manager.id, tenant_id=tenant.id, role=UserRole.MANAGER)


@pytest.mark.asyncio
async def test_unknown_or_inactive_callers_are_rejected(db_session, factory):
    tenant = await factory.tenant()
    inactive = await factory.user(tenant, UserRole.TECHNICIAN, is_active=False)

    with pytest.raises(Unauthenticated):
        await IdentityGate.authorize(db_session, "nobody")
    with pytest.raises(Unauthenticated):
        await IdentityGate.authorize(db_session, "")
    with pytest.raises(Unauthenticated):
        await IdentityGate.authorize(db_session, inactive.id)


@pytest.mark.parametrize("role, operation, allowed", [
    (UserRole.TECHNICIAN, Operation.ASSIGNMENT_READ_OWN, True),
    (UserRole.TECHNICIAN, Operation.VEHICLE_TELEMETRY, True),
    (UserRole.TECHNICIAN, Operation.ASSIGNMENT_OPEN, False),
    (UserRole.TECHNICIAN, Operation.STOCK_WRITE, False),
    (UserRole.TECHNICIAN, Operation.STOCK_TRANSFER_RESPOND, True),
    (UserRole.TECHNICIAN, Operation.STOCK_TRANSFER_REQUEST, False),
    (UserRole.MANAGER, Operation.ASSIGNMENT_REASSIGN, True),
    (UserRole.MANAGER, Operation.STOCK_TRANSFER_REQUEST, True),
    (UserRole.MANAGER, Operation.USER_CREATE_TECHNICIAN, True),
    (UserRole.MANAGER, Operation.USER_CREATE_MANAGER, False),
    (UserRole.MANAGER, Operation.USER_DELETE, False),
    (UserRole.MANAGER, Operation.INTEGRITY_AUDIT, False),
    (UserRole.ADMIN, Operation.USER_DELETE, True),
    (UserRole.ADMIN, Operation.TENANT_SETTINGS_WRITE, True),
    (UserRole.OWNER, Operation.INTEGRITY_AUDIT, True),
])
def test_policy_table(role, operation, allowed):
    assert is_permitted(role, operation) is allowed


def test_enforce_raises_forbidden_with_context():
    actor = Actor(user_id="u-1", tenant_id="t-1", role=UserRole.TECHNICIAN)

    with pytest.raises(Forbidden) as exc_info:
        enforce(actor, Operation.STOCK_WRITE)

    assert exc_info.value.details == {"role": "TECHNICIAN", "operation": "stock.write"}


@pytest.mark.asyncio
async def test_missing_token_is_rejected(client):
    response = await client.get("/v1/vehicles")

    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_AUTH_001"


@pytest.mark.asyncio
async def test_invalid_and_expired_tokens_are_rejected(client, factory):
    tenant = await factory.tenant()
    user = await factory.user(tenant, UserRole.MANAGER)

    response = await client.get("/v1/vehicles", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401

    expired = create_access_token(user.id, expires_delta=timedelta(minutes=-5))
    response = await client.get("/v1/vehicles", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401

    no_user_id = jwt.encode({"sub": user.email}, settings.secret_key, algorithm=settings.algorithm)
    response = await client.get("/v1/vehicles", headers={"Authorization": f"Bearer {no_user_id}"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_for_deactivated_user_is_rejected(client, factory, headers_for):
    tenant = await factory.tenant()
    user = await factory.user(tenant, UserRole.MANAGER, is_active=False)

    response = await client.get("/v1/vehicles", headers=headers_for(user))

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_role_gate_on_routes(client, factory, headers_for):
    tenant = await factory.tenant()
    tech = await factory.user(tenant, UserRole.TECHNICIAN)
    manager = await factory.user(tenant, UserRole.MANAGER)

    response = await client.get("/v1/users", headers=headers_for(tech))
    assert response.status_code == 403
    assert response.json()["details"]["operation"] == "user.read"

    response = await client.get("/v1/users", headers=headers_for(manager))
    assert response.status_code == 200
    assert response.json()["total"] == 2


def test_token_must_name_the_caller():
    assert caller_id_from_token(create_access_token("u-1", email="tech@example.com")) == "u-1"

    for claims in ({"sub": "tech@example.com"}, {"user_id": ""}, {"user_id": 42}):
        token = jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)
        assert caller_id_from_token(token) is None

    forged = jwt.encode({"user_id": "u-1"}, "not-the-secret", algorithm=settings.algorithm)
    assert caller_id_from_token(forged) is None
