import asyncio
import datetime as dt

import pytest

from caresync.core.abac import ABACEvaluator, evaluate_access, get_evaluator
from caresync.core.errors import MalformedRequestError
from caresync.models.attributes import (
    EnvironmentAttributes,
    PermissionRequest,
    ResourceAttributes,
    UserAttributes,
)
from caresync.providers.static_provider import StaticProfileProvider
from caresync.utils.audit_logger import AuditLogger


AFTER_HOURS = dt.datetime(2026, 3, 2, 22, 30, tzinfo=dt.timezone.utc)
OFFICE_HOURS = dt.datetime(2026, 3, 2, 10, 0, tzinfo=dt.timezone.utc)


def _request(user=None, resource=None, action="read", **environment):
    return PermissionRequest(
        user=user,
        resource=resource or ResourceAttributes(id="p-1", type="patient"),
        action=action,
        environment=EnvironmentAttributes(**environment),
    )


def _doctor(**fields):
    data = {"id": "doc-1", "roles": ["doctor"], "hospital_id": "h-1", "department": "Cardiology"}
    data.update(fields)
    return UserAttributes(**data)


class SlowProvider(StaticProfileProvider):
    async def fetch(self, user_id):
        await asyncio.sleep(1)
        return None


class BrokenProvider(StaticProfileProvider):
    async def fetch(self, user_id):
        raise ConnectionError("profile backend down")


@pytest.mark.asyncio
async def test_out_of_department_scope(evaluator):
    resource = ResourceAttributes(id="p-1", type="patient", department="Oncology")
    decision = await evaluator.evaluate_access(_request(_doctor(), resource))
    assert not decision.allowed
    assert decision.reason == "out of department scope"
    assert decision.public_reason() == "out of department scope"


@pytest.mark.asyncio
async def test_department_match_ignores_case(evaluator):
    resource = ResourceAttributes(id="p-1", type="patient", department="cardiology")
    decision = await evaluator.evaluate_access(_request(_doctor(), resource))
    assert decision.allowed
    assert decision.rule == "rbac"


@pytest.mark.asyncio
async def test_hospital_wide_role_crosses_departments(evaluator):
    admin = UserAttributes(id="adm-1", roles=["admin"], department="Administration")
    resource = ResourceAttributes(id="p-1", type="patient", department="Oncology")
    decision = await evaluator.evaluate_access(_request(admin, resource))
    assert decision.allowed


@pytest.mark.asyncio
async def test_emergency_override_is_audited(evaluator, sink):
    resource = ResourceAttributes(id="p-1", type="patient", department="Oncology", sensitivity="restricted")
    decision = await evaluator.evaluate_access(
        _request(_doctor(), resource, is_emergency=True, emergency_declared_by="charge-nurse")
    )
    assert decision.allowed
    assert decision.reason == "emergency override"
    assert decision.requires_audit
    assert len(sink.events) == 1
    event = sink.events[0]
    assert event["rule"] == "emergency-override"
    assert event["user_id"] == "doc-1"
    assert event["emergency_declared_by"] == "charge-nurse"


@pytest.mark.asyncio
async def test_emergency_fails_closed_when_audit_write_fails(catalog, failing_sink):
    evaluator = ABACEvaluator(catalog, audit_sink=failing_sink)
    decision = await evaluator.evaluate_access(_request(_doctor(), is_emergency=True))
    assert not decision.allowed
    assert decision.public_reason() == "Access denied"


@pytest.mark.asyncio
async def test_emergency_needs_eligible_role_and_allowlisted_action(evaluator, sink):
    clerk = UserAttributes(id="rec-1", roles=["receptionist"])
    resource = ResourceAttributes(id="p-1", type="patient", department="Oncology")
    decision = await evaluator.evaluate_access(_request(clerk, resource, is_emergency=True))
    assert decision.reason == "out of department scope"

    decision = await evaluator.evaluate_access(_request(_doctor(), action="delete", is_emergency=True))
    assert decision.reason == "RBAC permission denied"
    assert sink.events == []


@pytest.mark.asyncio
async def test_tenant_isolation(evaluator):
    resource = ResourceAttributes(id="p-1", type="patient", hospital_id="h-2")
    decision = await evaluator.evaluate_access(_request(_doctor(), resource, is_emergency=True))
    assert not decision.allowed
    assert decision.rule == "tenant-isolation"
    assert decision.public_reason() == "Access denied"


@pytest.mark.asyncio
async def test_forbidden_actions_beat_every_grant(evaluator):
    admin = UserAttributes(id="adm-1", roles=["admin"], clearance_level="critical")
    decision = await evaluator.evaluate_access(
        _request(admin, ResourceAttributes(id="log-1", type="audit"), action="delete")
    )
    assert not decision.allowed
    assert decision.reason == "action explicitly forbidden"


@pytest.mark.asyncio
async def test_owner_reads_own_record(evaluator):
    patient = UserAttributes(id="pat-1", roles=["patient"])
    resource = ResourceAttributes(id="c-1", type="consultation", owner_id="pat-1", department="Oncology")
    decision = await evaluator.evaluate_access(_request(patient, resource, action="view"))
    assert decision.allowed
    assert decision.rule == "ownership"

    decision = await evaluator.evaluate_access(_request(patient, resource, action="write"))
    assert not decision.allowed


@pytest.mark.asyncio
async def test_insufficient_clearance(evaluator):
    resource = ResourceAttributes(id="p-1", type="patient", sensitivity="confidential")
    decision = await evaluator.evaluate_access(_request(_doctor(), resource))
    assert decision.reason == "insufficient clearance"

    decision = await evaluator.evaluate_access(_request(_doctor(clearance_level="medium"), resource))
    assert decision.allowed


@pytest.mark.asyncio
async def test_restricted_record_after_hours(evaluator):
    resource = ResourceAttributes(id="p-1", type="patient", sensitivity="restricted")
    user = _doctor(clearance_level="high")
    decision = await evaluator.evaluate_access(_request(user, resource, time=AFTER_HOURS))
    assert decision.reason == "outside permitted hours"

    decision = await evaluator.evaluate_access(_request(user, resource, time=OFFICE_HOURS))
    assert decision.allowed

    decision = await evaluator.evaluate_access(
        _request(_doctor(clearance_level="critical"), resource, time=AFTER_HOURS)
    )
    assert decision.allowed


@pytest.mark.asyncio
async def test_untrusted_device_and_location(evaluator):
    confidential = ResourceAttributes(id="p-1", type="patient", sensitivity="confidential")
    user = _doctor(clearance_level="high")
    decision = await evaluator.evaluate_access(_request(user, confidential, device_type="kiosk"))
    assert decision.reason == "untrusted device"

    restricted = ResourceAttributes(id="p-2", type="patient", sensitivity="restricted")
    decision = await evaluator.evaluate_access(
        _request(user, restricted, location="remote", time=OFFICE_HOURS)
    )
    assert decision.reason == "location not permitted"


@pytest.mark.asyncio
async def test_unauthenticated_and_inactive(evaluator):
    decision = await evaluator.evaluate_access(_request(None))
    assert decision.reason == "user not authenticated"

    decision = await evaluator.evaluate_access(_request(_doctor(is_active=False)))
    assert decision.reason == "user inactive"


@pytest.mark.asyncio
async def test_rbac_fallback_is_last(evaluator):
    lab = UserAttributes(id="lab-1", roles=["lab_technician"])
    decision = await evaluator.evaluate_access(
        _request(lab, ResourceAttributes(id="o-1", type="lab"), action="upload_results")
    )
    assert decision.allowed
    decision = await evaluator.evaluate_access(
        _request(lab, ResourceAttributes(id="b-1", type="billing"), action="process")
    )
    assert decision.reason == "RBAC permission denied"


@pytest.mark.asyncio
async def test_attribute_lookup_timeout_fails_closed(catalog, sink):
    evaluator = ABACEvaluator(catalog, audit_sink=sink, attribute_provider=SlowProvider(), lookup_timeout=0.05)
    decision = await evaluator.evaluate_access(_request(_doctor()))
    assert not decision.allowed
    assert decision.rule == "attribute-lookup"


@pytest.mark.asyncio
async def test_attribute_lookup_error_fails_closed(catalog, sink):
    evaluator = ABACEvaluator(catalog, audit_sink=sink, attribute_provider=BrokenProvider())
    decision = await evaluator.evaluate_access(_request(_doctor()))
    assert not decision.allowed
    assert decision.public_reason() == "Access denied"


@pytest.mark.asyncio
async def test_fresh_profile_replaces_snapshot(catalog, sink):
    provider = StaticProfileProvider([_doctor(is_active=False)], provider_id="test-static")
    evaluator = ABACEvaluator(catalog, audit_sink=sink, attribute_provider=provider)
    decision = await evaluator.evaluate_access(_request(_doctor()))
    assert decision.reason == "user inactive"

    decision = await evaluator.evaluate_access(_request(_doctor(id="ghost")))
    assert decision.reason == "user not authenticated"


@pytest.mark.asyncio
async def test_audit_all_records_ordinary_decisions(catalog, sink):
    evaluator = ABACEvaluator(catalog, audit_sink=sink, audit_all=True)
    await evaluator.evaluate_access(_request(_doctor()))
    assert [event["rule"] for event in sink.events] == ["rbac"]


@pytest.mark.asyncio
async def test_mapping_requests_are_validated(evaluator):
    decision = await evaluator.evaluate_access(
        {"user": {"id": "doc-1", "roles": ["doctor"]}, "resource": {"id": "p-1", "type": "patient"}, "action": "read"}
    )
    assert decision.allowed

    with pytest.raises(MalformedRequestError):
        await evaluator.evaluate_access({"resource": {"id": "p-1"}, "action": "read"})
    with pytest.raises(MalformedRequestError):
        await evaluator.evaluate_access("patient:read")


@pytest.mark.asyncio
async def test_default_evaluator_is_wired_from_settings():
    evaluator = get_evaluator()
    assert evaluator is get_evaluator()
    assert isinstance(evaluator.audit_sink, AuditLogger)
    assert evaluator.attribute_provider is None
    decision = await evaluate_access(_request(_doctor(), action="write"))
    assert decision.allowed
