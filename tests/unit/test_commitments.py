"""
Tests for donors, commitments and their use by planned responses.
"""

import pytest

from drms_core.errors import AuthorizationError, DuplicateRecordError, ValidationError


@pytest.fixture
def donor(registry, admin):
    """Registered donor organization"""
    return registry.commitments.create_donor({"name": "Relief Org", "type": "ORGANIZATION"}, admin)


@pytest.fixture
def commitment(registry, admin, donor, entity, incident):
    """100 units pledged to the entity"""
    return registry.commitments.create_commitment(
        {
            "donor_id": donor["id"],
            "entity_id": entity["id"],
            "incident_id": incident["id"],
            "items": [{"name": "Rice", "unit": "kg", "quantity": 60},
                      {"name": "Beans", "unit": "kg", "quantity": 40}],
        },
        admin,
    )


class TestCommitments:
    """Tests for CommitmentService"""

    def test_total_is_summed_from_items(self, commitment):
        """The committed total is the sum of item quantities"""
        assert commitment["total_committed_quantity"] == 100
        assert commitment["delivered_quantity"] == 0
        assert commitment["status"] == "PLANNED"

    def test_partial_then_complete(self, registry, admin, commitment):
        """Drawing down moves PLANNED -> PARTIAL -> COMPLETE"""
        partial = registry.commitments.use_commitment(commitment["id"], [{"quantity": 40}], admin)
        assert partial["status"] == "PARTIAL"
        assert partial["delivered_quantity"] == 40

        complete = registry.commitments.use_commitment(commitment["id"], [{"quantity": 60}], admin)
        assert complete["status"] == "COMPLETE"
        assert complete["delivered_quantity"] == 100

    def test_over_use_rejected(self, registry, admin, commitment):
        """More than what is left raises ValidationError and changes nothing"""
        registry.commitments.use_commitment(commitment["id"], [{"quantity": 70}], admin)

        with pytest.raises(ValidationError):
            registry.commitments.use_commitment(commitment["id"], [{"quantity": 31}], admin)

        assert registry.commitments.get_commitment(commitment["id"])["delivered_quantity"] == 70

    def test_completed_commitment_cannot_be_used_or_cancelled(self, registry, admin, commitment):
        """A complete commitment is closed"""
        registry.commitments.use_commitment(commitment["id"], [{"quantity": 100}], admin)

        with pytest.raises(ValidationError):
            registry.commitments.use_commitment(commitment["id"], [{"quantity": 1}], admin)
        with pytest.raises(ValidationError):
            registry.commitments.cancel_commitment(commitment["id"], admin)

    def test_commitment_requires_items(self, registry, admin, donor, entity, incident):
        """Empty pledges are rejected"""
        with pytest.raises(ValidationError):
            registry.commitments.create_commitment(
                {"donor_id": donor["id"], "entity_id": entity["id"], "incident_id": incident["id"], "items": []},
                admin,
            )

    def test_stats(self, registry, admin, commitment):
        """Stats report status breakdown and utilization"""
        registry.commitments.use_commitment(commitment["id"], [{"quantity": 25}], admin)

        stats = registry.commitments.get_commitment_stats()

        assert stats["totalCommitments"] == 1
        assert stats["statusBreakdown"]["partial"] == 1
        assert stats["quantities"]["totalDelivered"] == 25
        assert stats["quantities"]["utilizationRate"] == 25.0

    def test_assessor_cannot_register_donor(self, registry, assessor):
        """Only admins, coordinators and donors register donors"""
        with pytest.raises(AuthorizationError):
            registry.commitments.create_donor({"name": "Nope"}, assessor)

    def test_available_commitments_follow_assignments(self, registry, responder, commitment, assigned):
        """Responders see usable commitments at their entities"""
        available = registry.commitments.get_available_commitments(responder)

        assert [c["id"] for c in available] == [commitment["id"]]


class TestResponsesUseCommitments:
    """Tests for planned responses drawing on commitments"""

    def test_response_draws_down_commitment(self, registry, responder, verified_assessment, commitment):
        """Planning against a commitment records the donor and the delivered quantity"""
        response = registry.responses.create_response(
            {
                "entity_id": verified_assessment["entity_id"],
                "assessment_id": verified_assessment["id"],
                "type": "FOOD",
                "commitment_id": commitment["id"],
                "items": [{"name": "Rice", "unit": "kg", "quantity": 30}],
            },
            responder,
        )

        assert response["donor_id"] == commitment["donor_id"]
        assert registry.commitments.get_commitment(commitment["id"])["status"] == "PARTIAL"

    def test_second_planned_response_rejected(self, registry, responder, verified_assessment):
        """One planned response per assessment"""
        data = {
            "entity_id": verified_assessment["entity_id"],
            "assessment_id": verified_assessment["id"],
            "type": "FOOD",
            "items": [{"name": "Rice", "quantity": 10}],
        }
        registry.responses.create_response(data, responder)

        with pytest.raises(DuplicateRecordError):
            registry.responses.create_response(data, responder)

    def test_unverified_assessment_rejected(self, registry, assessor, responder, assigned):
        """Responses need a verified assessment"""
        draft = registry.assessments.create_assessment(
            {"entity_id": assigned["id"], "rapid_assessment_type": "WASH"}, assessor,
        )

        with pytest.raises(ValidationError):
            registry.responses.create_response(
                {"entity_id": assigned["id"], "assessment_id": draft["id"], "type": "WASH",
                 "items": [{"name": "Soap", "quantity": 5}]},
                responder,
            )

    def test_confirm_delivery(self, registry, responder, verified_assessment):
        """Delivery confirmation moves the response to DELIVERED"""
        response = registry.responses.create_response(
            {"entity_id": verified_assessment["entity_id"], "assessment_id": verified_assessment["id"],
             "type": "FOOD", "items": [{"name": "Rice", "quantity": 10}]},
            responder,
        )

        delivered = registry.responses.confirm_delivery(
            response["id"], [{"name": "Rice", "quantity": 10}], responder, delivery_notes="All delivered",
        )

        assert delivered["status"] == "DELIVERED"
