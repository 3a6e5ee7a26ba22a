# Overview: Pytest coverage for bearer tokens and company-scoped numbering.

from datetime import timedelta

import pytest

from supplychain.errors import ValidationFailed
from supplychain.models import SessionToken, User
from supplychain.services import hierarchy_service, numbering_service, session_service
from supplychain.time_utils import utcnow


class TestSessionTokens:
    """Issue, resolve and revoke opaque tokens."""

    def test_issue_and_resolve(self, db_session, company, actors):
        session, plaintext = session_service.issue_token(actors.dist_user.user_id)
        assert len(plaintext) == 64
        assert session.token_hash == session_service.hash_token(plaintext)
        assert session.token_hash != plaintext

        actor = session_service.resolve_actor(plaintext)
        assert actor.user_id == actors.dist_user.user_id
        assert actor.org_id == company.dist.id
        assert actor.company_id == company.hq.id
        assert actor.role_level == 40

    def test_unknown_and_empty_tokens(self, db_session):
        assert session_service.resolve_actor("") is None
        assert session_service.resolve_actor("deadbeef") is None

    def test_revoke(self, actors):
        _, plaintext = session_service.issue_token(actors.hq_user.user_id)
        assert session_service.revoke_token(plaintext) is True
        assert session_service.revoke_token(plaintext) is False
        assert session_service.resolve_actor(plaintext) is None

    def test_expired(self, db_session, actors):
        session, plaintext = session_service.issue_token(actors.hq_user.user_id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()
        assert session_service.resolve_actor(plaintext) is None

    def test_deactivated_user_stops_resolving(self, db_session, actors):
        _, plaintext = session_service.issue_token(actors.hq_user.user_id)
        db_session.query(User).filter_by(id=actors.hq_user.user_id).update({"is_active": False})
        db_session.commit()
        db_session.expire_all()
        assert session_service.resolve_actor(plaintext) is None

        with pytest.raises(ValidationFailed):
            session_service.issue_token(actors.hq_user.user_id)

    def test_deactivated_organization_stops_resolving(self, db_session, company, actors):
        _, plaintext = session_service.issue_token(actors.shop_manager.user_id)
        company.shop.is_active = False
        db_session.commit()
        assert session_service.resolve_actor(plaintext) is None

    def test_timeout_from_config(self, app, monkeypatch, db_session, actors):
        monkeypatch.setitem(app.config, "SESSION_ABSOLUTE_TIMEOUT_HOURS", 2)
        session, _ = session_service.issue_token(actors.hq_user.user_id)
        assert session.expires_at - session.created_at == timedelta(hours=2)
        assert db_session.query(SessionToken).count() == 1


class TestNumbering:

    def test_sequences_per_type(self, company):
        assert numbering_service.next_number(company_id=company.hq.id, sequence_type="PO") == "PO-0001"
        assert numbering_service.next_number(company_id=company.hq.id, sequence_type="PO") == "PO-0002"
        assert numbering_service.next_number(company_id=company.hq.id, sequence_type="INVOICE") == "INV-0001"

    def test_sequences_per_company(self, company, other_company):
        numbering_service.next_number(company_id=company.hq.id, sequence_type="TRANSFER")
        assert numbering_service.next_number(company_id=other_company.hq.id, sequence_type="TRANSFER") == "TRF-0001"

    def test_number_consumed_only_on_commit(self, db_session, company):
        numbering_service.next_number(company_id=company.hq.id, sequence_type="RECEIPT")
        db_session.rollback()
        assert numbering_service.next_number(company_id=company.hq.id, sequence_type="RECEIPT") == "RCP-0001"

    def test_unknown_type(self, company):
        with pytest.raises(ValidationFailed):
            numbering_service.next_number(company_id=company.hq.id, sequence_type="MEMO")

    def test_orphan_user_has_no_company(self, db_session):
        lone = hierarchy_service.create_organization(org_code="LONE", org_name="Lone", org_type="MANUFACTURER")
        user = User(org_id=lone.id, email="lone@example.test", full_name="Lone", role_level=30)
        db_session.add(user)
        db_session.commit()
        assert session_service.actor_for_user(user).company_id is None
